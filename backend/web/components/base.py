"""
Base Component class for the attendance UI.

Pages are rendered with plain Python classes instead of a template engine.
Every component implements `render()` and uses the escaping helpers below
for any value that comes from the school API or the user.
"""

from typing import Optional, Any
import html


class Component:
    """Base class for all UI components."""

    def render(self) -> str:
        """Render the component as an HTML string."""
        raise NotImplementedError("Subclasses must implement render()")

    @staticmethod
    def escape(text: Optional[Any]) -> str:
        """Escape HTML entities; None becomes an empty string."""
        return html.escape(str(text)) if text is not None else ""

    @staticmethod
    def classes(*args: str, **conditionals: bool) -> str:
        """Build a CSS class string with conditional classes.

        Example:
            >>> Component.classes("btn", "btn-primary", disabled=True, active=False)
            'btn btn-primary disabled'
        """
        classes = [c for c in args if c]
        classes.extend(key.replace("_", "-") for key, value in conditionals.items() if value)
        return " ".join(classes)

    @staticmethod
    def attributes(**attrs: Any) -> str:
        """Build HTML attributes from keyword arguments.

        Example:
            >>> Component.attributes(id="nis", data_value="123", required=True)
            'id="nis" data-value="123" required'
        """
        result = []
        for key, value in attrs.items():
            # Trailing underscore for reserved names: class_ -> class, for_ -> for
            if key.endswith("_"):
                key = key[:-1]
            else:
                key = key.replace("_", "-")

            if value is True:
                result.append(key)
            elif value is not False and value is not None:
                result.append(f'{key}="{html.escape(str(value))}"')

        return " ".join(result)
