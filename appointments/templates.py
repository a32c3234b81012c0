"""
Localized SMS templates.
"""

from appointments import config

TEMPLATES: dict[str, dict[str, str]] = {
    "da": {
        "confirmation_customer": (
            "Hej {fullname}, tak for din reservation, som indeholder {count} behandling(er)"
        ),
        "reminder_customer": (
            "Hej {fullname}, husk din {title} behandling i morgen kl. {time}. "
            "Vi ser frem til at se dig!"
        ),
        "reminder_staff": (
            "Hej {fullname}, husk du har en kunde som skal have {title} "
            "behandling i morgen kl. {time}!"
        ),
    },
    "en": {
        "confirmation_customer": (
            "Hi {fullname}, thank you for your reservation of {count} treatment(s)"
        ),
        "reminder_customer": (
            "Hi {fullname}, remember your {title} treatment tomorrow at {time}. "
            "We look forward to seeing you!"
        ),
        "reminder_staff": (
            "Hi {fullname}, remember you have a customer booked for {title} "
            "tomorrow at {time}!"
        ),
    },
}


def render(name: str, language: str | None = None, **values: object) -> str:
    """Render template `name`, falling back to Danish for unknown languages."""
    templates = TEMPLATES.get(language or config.MESSAGE_LANGUAGE, TEMPLATES["da"])
    return templates[name].format(**values)
