"""
Input forms for the JSON API.

Request bodies are bound to Flask-WTF forms for field validation; the
services then apply the business rules.
"""
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import DateField, DecimalField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional, Regexp

from minierp.exceptions import ValidationError

DATE_FORMATS = ['%Y-%m-%d', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M:%SZ', '%Y-%m-%dT%H:%M:%S.%fZ']


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


class JsonForm(FlaskForm):
    """FlaskForm bound to a decoded JSON object instead of request.form."""

    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, data, partial=False):
        """
        Bind and validate a JSON body.

        With ``partial`` only the keys present in the body are validated and
        returned, which gives PUT its partial update semantics.

        Raises:
            ValidationError: body is not an object or a field is invalid
        """
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        formdata = MultiDict()
        for key, value in data.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = str(value).lower()
            elif isinstance(value, float) and value.is_integer():
                value = int(value)
            formdata.add(key, value if isinstance(value, str) else str(value))

        form = cls(formdata=formdata)
        if partial:
            for name in list(form._fields):
                if name not in data:
                    del form[name]

        if not form.validate():
            raise ValidationError('Invalid input', errors=form.errors)
        return form

    def cleaned_data(self):
        """Field values keyed by name, empty strings turned into None."""
        return {
            name: (None if field.data == '' else field.data)
            for name, field in self._fields.items()
        }


class SupplierForm(JsonForm):
    name = StringField(
        'Name',
        validators=[DataRequired(message='Name is required'), Length(max=255)],
        filters=[_strip]
    )
    contact = StringField(
        'Contact',
        validators=[DataRequired(message='Contact is required'), Length(max=255)],
        filters=[_strip]
    )
    email = StringField(
        'Email',
        validators=[
            Optional(),
            Length(max=255),
            Regexp(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', message='Invalid email address')
        ],
        filters=[_strip]
    )
    phone = StringField('Phone', validators=[Optional(), Length(max=50)], filters=[_strip])
    address = TextAreaField('Address', validators=[Optional()])


class ProductForm(JsonForm):
    name = StringField(
        'Name',
        validators=[DataRequired(message='Name is required'), Length(max=255)],
        filters=[_strip]
    )
    category = StringField(
        'Category',
        validators=[DataRequired(message='Category is required'), Length(max=100)],
        filters=[_strip]
    )
    price = DecimalField(
        'Price',
        validators=[
            InputRequired(message='Price is required'),
            NumberRange(min=0, message='Price cannot be negative')
        ],
        places=2
    )
    supplier_id = StringField(
        'Supplier',
        validators=[DataRequired(message='Supplier is required'), Length(max=50)],
        filters=[_strip]
    )
    # Initial stock only; later changes go through transactions
    stock = IntegerField(
        'Initial stock',
        validators=[Optional(), NumberRange(min=0, message='Stock cannot be negative')]
    )


class TransactionForm(JsonForm):
    product_id = StringField(
        'Product',
        validators=[DataRequired(message='Product is required'), Length(max=50)],
        filters=[_strip]
    )
    quantity = IntegerField(
        'Quantity',
        validators=[
            DataRequired(message='Quantity must be a positive integer'),
            NumberRange(min=1, message='Quantity must be a positive integer')
        ]
    )
    type = SelectField(
        'Type',
        choices=[('purchase', 'Purchase'), ('sale', 'Sale')],
        validators=[DataRequired(message='Type must be either "purchase" or "sale"')],
        filters=[_lower]
    )
    date = DateField('Date', validators=[Optional()], format=DATE_FORMATS)
    notes = TextAreaField('Notes', validators=[Optional()])
