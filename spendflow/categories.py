"""Category label helpers."""

DEFAULT_CATEGORIES: list[str] = [
    "Food & Dining",
    "Groceries",
    "Coffee",
    "Shopping",
    "Bills & Utilities",
    "Rent/Mortgage",
    "Travel",
    "Transportation",
    "Gas",
    "Entertainment",
    "Health & Fitness",
    "Medical",
    "Education",
    "Gifts & Donations",
    "Personal Care",
    "Subscriptions",
    "Home",
    "Kids",
    "Pets",
    "Taxes",
    "Fees",
    "Other",
]


def format_category_label(label: str) -> str:
    """Turn a provider label like ``FOOD_AND_DRINK`` into ``Food And Drink``.

    Labels without underscores that are not all upper case are returned as-is,
    so user-chosen labels like ``Rent/Mortgage`` keep their spelling.
    """
    if not label:
        return label
    if "_" not in label and not label.isupper():
        return label
    words = label.replace("_", " ").split(" ")
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)
