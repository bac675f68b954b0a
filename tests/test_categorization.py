"""Tests for MCC / merchant categorization."""

from types import SimpleNamespace

from app.services.categorization import (
    UNCATEGORIZED,
    behavioral_category,
    category_from_mcc,
    category_from_merchant_name,
    effective_category,
    mcc_category,
    mcc_for_merchant,
    spending_tier,
)


def _tx(**fields):
    fields.setdefault("user_category", None)
    fields.setdefault("category", None)
    fields.setdefault("mcc_code", None)
    fields.setdefault("merchant_name", None)
    return SimpleNamespace(**fields)


class TestCategoryFromMcc:
    """Tests for the MCC to category mapping."""

    def test_known_codes(self) -> None:
        """Codes from the explicit lists map to their category."""
        assert category_from_mcc("5411") == "Groceries"
        assert category_from_mcc("5812") == "Food & Drinks"
        assert category_from_mcc("4814") == "Utilities"
        assert category_from_mcc("7832") == "Entertainment"
        assert category_from_mcc("8011") == "Health & Personal Care"
        assert category_from_mcc("8211") == "Education"
        assert category_from_mcc("9311") == "Government"
        assert category_from_mcc("6011") == "Financial Services"
        assert category_from_mcc("6513") == "Home & Rent"

    def test_prefix_rules(self) -> None:
        """Unlisted 4xxx codes are Travel and unlisted 5xxx codes Shopping."""
        assert category_from_mcc("4511") == "Travel"
        assert category_from_mcc("5999") == "Shopping"
        assert category_from_mcc("7299") == "Services"

    def test_broad_prefix_shadows_later_lists(self) -> None:
        """5xxx codes listed under other categories still come out as Shopping."""
        assert category_from_mcc("5541") == "Shopping"
        assert category_from_mcc("5912") == "Shopping"

    def test_missing_or_unknown(self) -> None:
        """No code or an unmapped code is Uncategorized."""
        assert category_from_mcc(None) == UNCATEGORIZED
        assert category_from_mcc("") == UNCATEGORIZED
        assert category_from_mcc("0742") == UNCATEGORIZED


class TestEffectiveCategory:
    """Tests for the category precedence used in reports."""

    def test_user_override_wins(self) -> None:
        """A user category beats everything else."""
        tx = _tx(user_category="Gifts & Donations", category="Shopping", mcc_code="5411")
        assert effective_category(tx) == "Gifts & Donations"

    def test_legacy_category_before_mcc(self) -> None:
        """A stored category is used unless it is Uncategorized."""
        assert effective_category(_tx(category="Travel", mcc_code="5411")) == "Travel"
        assert effective_category(_tx(category=UNCATEGORIZED, mcc_code="5411")) == "Groceries"

    def test_merchant_keywords_without_mcc(self) -> None:
        """Merchant keywords are the last resort."""
        assert effective_category(_tx(merchant_name="Ya Kun Kaya Kopitiam")) == "Food & Drinks"
        assert effective_category(_tx(merchant_name="NTUC FairPrice Xtra")) == "Groceries"
        assert effective_category(_tx(merchant_name="Mystery Shop")) == UNCATEGORIZED
        assert category_from_merchant_name(None) is None

    def test_mcc_category_ignores_overrides(self) -> None:
        """Rewards only look at the MCC."""
        assert mcc_category(_tx(user_category="Gifts & Donations", mcc_code="5411")) == "Groceries"
        assert mcc_category(_tx(category="Travel")) == UNCATEGORIZED


class TestMccForMerchant:
    """Tests for known travel merchants."""

    def test_airlines_and_hotels(self) -> None:
        """Airline and hotel names resolve to their MCC."""
        assert mcc_for_merchant("SINGAPORE AIRLINES 618") == "3144"
        assert mcc_for_merchant("Grand Hyatt Singapore") == "3572"
        assert mcc_for_merchant("Booking.com Amsterdam") == "4722"

    def test_longest_pattern_wins(self) -> None:
        """'airasia x' is matched before 'airasia'."""
        assert mcc_for_merchant("AirAsia X Berhad") == "3177"
        assert mcc_for_merchant("AirAsia Berhad") == "3176"

    def test_short_or_unknown_names(self) -> None:
        """Too-short or unknown names give None."""
        assert mcc_for_merchant("ab") is None
        assert mcc_for_merchant(None) is None
        assert mcc_for_merchant("Corner Bakery") is None


class TestTiers:
    """Tests for spending tiers and behavioural groups."""

    def test_tiers(self) -> None:
        assert spending_tier("Groceries") == "Essentials"
        assert spending_tier("Travel") == "Lifestyle"
        assert spending_tier("Something Else") == "Other"

    def test_behaviour(self) -> None:
        assert behavioral_category("Food & Drinks") == "Convenience"
        assert behavioral_category("Education") == "Investment"
        assert behavioral_category("Groceries") == "Planned"
