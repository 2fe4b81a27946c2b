# Jurnal Kehadiran component system
# Pure Python components for escaped HTML generation

from .base import Component
from .layout import Layout
from .navigation import Navigation
from .feedback import Alert, AccessDenied, LoadingNotice
from .tables import DataTable, StatGrid
from .forms import FormField, TextAreaField, FileUploadField, TextInputField, SelectField, SubmitButton, csrf_field

__all__ = [
    "Component",
    "Layout",
    "Navigation",
    "Alert",
    "AccessDenied",
    "LoadingNotice",
    "DataTable",
    "StatGrid",
    "FormField",
    "TextAreaField",
    "FileUploadField",
    "TextInputField",
    "SelectField",
    "SubmitButton",
    "csrf_field",
]
