"""
Form components: field wrappers, the CSRF hidden input and the submit button.
"""

from .fields import FormField, TextAreaField, FileUploadField, TextInputField, SelectField, csrf_field
from .submit import SubmitButton

__all__ = [
    "FormField",
    "TextAreaField",
    "FileUploadField",
    "TextInputField",
    "SelectField",
    "SubmitButton",
    "csrf_field",
]
