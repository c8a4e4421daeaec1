"""Prompt construction for merchant categorization.

This module builds:
- The system instructions for the merchant-identification task.
- The user content for one statement description.
- The strict ``text.format`` (JSON Schema) object for the OpenAI Responses API.

Only the merchant description is sent to the model; account numbers and card
details never leave the process.
"""

from __future__ import annotations

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

CATEGORIES: tuple[str, ...] = (
    "Groceries",
    "Dining",
    "Transport",
    "Utilities",
    "Entertainment",
    "Shopping",
    "Health",
    "Insurance",
    "Subscriptions",
    "Income",
    "Transfer",
    "Government",
    "Education",
    "Travel",
    "Rent",
    "Other",
)

# Descriptions longer than this are truncated before being sent.
MAX_DESCRIPTION_CHARS = 200


def build_system_instructions() -> str:
    return (
        "You identify the merchant behind a bank statement line. Return the merchant's "
        "common trading name (e.g. 'Woolworths', not 'WOOLWORTHS METRO 1234 SYDNEY') and "
        "exactly one spending category from the allowed list. When the line does not name "
        "an identifiable merchant, return an empty entity_name. Output JSON only that "
        "conforms to the specified schema."
    )


def build_user_content(description: str) -> str:
    text = description.strip()[:MAX_DESCRIPTION_CHARS]
    return (
        "Statement description:\n"
        f"{text}\n\n"
        "Allowed categories: " + ", ".join(CATEGORIES) + "\n"
        "Report your confidence in the merchant identification as a number in [0, 1]."
    )


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``text.format`` object.

    Shape: ``{"entity_name": str, "category": enum, "confidence": number}``;
    every property is required and no others are allowed.
    """

    return {
        "type": "json_schema",
        "name": "merchant_categorization",
        "schema": {
            "type": "object",
            "properties": {
                "entity_name": {"type": "string"},
                "category": {"type": "string", "enum": list(CATEGORIES)},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            },
            "required": ["entity_name", "category", "confidence"],
            "additionalProperties": False,
        },
        "strict": True,
    }


__all__ = [
    "CATEGORIES",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
]
