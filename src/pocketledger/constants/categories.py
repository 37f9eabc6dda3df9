"""
Default category vocabularies offered to entry forms.
The ledger core accepts any category string; these lists are suggestions.
"""

from __future__ import annotations

from ..models.budget import ALL_CATEGORIES

# Record Categories - Expenses
EXPENSE_CATEGORIES = [
    "Food",
    "Transport",
    "Shopping",
    "Utilities",
    "Rent",
    "Health",
    "Education",
    "Entertainment",
    "Bills",
    "Groceries",
    "Travel",
    "Other Expense",
]

# Record Categories - Income
INCOME_CATEGORIES = [
    "Salary",
    "Freelance",
    "Investments",
    "Gift",
    "Refund",
    "Other Income",
]

# Budget Categories ("All" budgets every expense category at once)
BUDGET_CATEGORIES = [ALL_CATEGORIES, *EXPENSE_CATEGORIES]

# Synthetic bucket used by the category breakdown when categories overflow the cap
OTHER_BUCKET = "Other"
