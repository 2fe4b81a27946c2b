"""
Form field components.

Small components that keep label, input, help and error markup consistent
across the attendance, roster and onboarding forms.
"""

from typing import Iterable, Optional, Tuple

from ..base import Component


class FormField(Component):
    """Wrapper that renders label, input slot, help, and error text."""

    def __init__(
        self,
        field_id: str,
        label: str,
        *,
        required: bool = False,
        help_text: Optional[str] = None,
        error_text: Optional[str] = None,
    ) -> None:
        self.field_id = field_id
        self.label = label
        self.required = required
        self.help_text = help_text
        self.error_text = error_text

    def render(self, input_html: str) -> str:
        state_class = " form-field--error" if self.error_text else ""
        required_marker = (
            '<span class="form-required" aria-hidden="true">*</span>'
            if self.required
            else ""
        )
        help_html = (
            f'<p class="form-help" id="{self.field_id}-help">{self.escape(self.help_text)}</p>'
            if self.help_text
            else ""
        )
        error_html = (
            f'<p class="form-error" role="alert" id="{self.field_id}-error">{self.escape(self.error_text)}</p>'
            if self.error_text
            else ""
        )
        label_attrs = self.attributes(for_=self.field_id, class_="form-label")
        return (
            f'<div class="form-field{state_class}">'
            f"<label {label_attrs}>"
            f"{self.escape(self.label)}{required_marker}"
            "</label>"
            f"{input_html}"
            f"{help_html}"
            f"{error_html}"
            "</div>"
        )

    def _aria(self) -> dict:
        return {
            "aria_describedby": f"{self.field_id}-help" if self.help_text else None,
            "aria_invalid": "true" if self.error_text else "false",
        }


class TextAreaField(FormField):
    """Convenience helper for textareas."""

    def render(self, value: str = "", rows: int = 5, **attrs: str) -> str:
        textarea_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            rows=str(rows),
            required=self.required,
            **self._aria(),
            **attrs,
        )
        input_html = f"<textarea {textarea_attrs}>{self.escape(value)}</textarea>"
        return super().render(input_html)


class FileUploadField(FormField):
    """File upload control, e.g. the attendance photo."""

    def render(self, accept: Optional[str] = None, **attrs: str) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            type="file",
            accept=accept,
            required=self.required,
            **self._aria(),
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class TextInputField(FormField):
    """Single-line input (`text`, `email`, `password`, `number`, `date`)."""

    def render(
        self,
        *,
        value: str = "",
        input_type: str = "text",
        autocomplete: Optional[str] = None,
        placeholder: Optional[str] = None,
        **attrs: str,
    ) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            type=input_type,
            value=value,
            autocomplete=autocomplete,
            placeholder=placeholder,
            required=self.required,
            **self._aria(),
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class SelectField(FormField):
    """Drop-down with `(value, label)` options."""

    def render(self, options: Iterable[Tuple[str, str]], *, value: Optional[str] = None, **attrs: str) -> str:
        select_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            required=self.required,
            **self._aria(),
            **attrs,
        )
        opts = []
        for opt_value, opt_label in options:
            selected = " selected" if value is not None and str(opt_value) == str(value) else ""
            opts.append(f'<option value="{self.escape(opt_value)}"{selected}>{self.escape(opt_label)}</option>')
        return super().render(f"<select {select_attrs}>{''.join(opts)}</select>")


def csrf_field(token: Optional[str]) -> str:
    """Hidden input carrying the session CSRF token."""
    return f'<input type="hidden" name="csrf_token" value="{Component.escape(token or "")}">'
