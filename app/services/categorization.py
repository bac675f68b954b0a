# app/services/categorization.py
#
# Categorization Helpers
# Maps MCC codes and merchant names to spending categories, and categories to
# the spending tiers / behavioural groups used by insights.

UNCATEGORIZED = "Uncategorized"

# ---- MCC -> category ----

GROCERY_MCCS = {"5411", "5422", "5451", "5462", "5499", "9751"}
FOOD_MCCS = {"5811", "5812", "5813", "5814", "5441", "5921"}
TRAVEL_MCCS = {"4121", "4112", "3000", "7011", "4225", "4119"}
UTILITY_MCCS = {"4814", "4899"}

SHOPPING_MCCS = {
    # General
    "5300", "5310", "5311", "5331", "5399", "5262", "5309",
    # Electronics
    "5045", "5732", "5734", "5815", "5816", "5817", "5818", "7622",
    # Clothing
    "5137", "5139", "5611", "5621", "5631", "5641", "5651", "5655", "5661",
    "5681", "5691", "5697", "5698", "5699",
    # Jewelry & luxury
    "5094", "5944", "5950", "7631",
    # Books & gifts
    "5111", "5192", "5942", "5943", "5947", "5970", "5972",
    # Specialty retail
    "5193", "5945", "5946", "5948", "5949", "5963", "5964", "5971", "5973",
    "5992", "5995", "5997", "5999", "5931", "5932", "5933", "5937",
    # Business supplies
    "5044", "5046", "5065", "5072", "5074", "5978",
}

ENTERTAINMENT_MCCS = {"7832", "7941", "5733", "5735", "5941", "5993", "5994", "7993"}

HEALTH_MCCS = {
    "5912", "5977", "7230", "7298", "8011", "8021", "8031", "8041", "8042",
    "8043", "8049", "8050", "8062", "8071", "8099", "5122", "5975", "5976",
}

SERVICE_MCCS = {
    "7273", "7277", "7278", "7296", "7297", "7321", "7339", "7361", "7379", "7392",
    "7623", "7629",
    "8351", "8398", "8641", "8651", "8661",
}

# 7xxx codes that are not generic services
NON_SERVICE_7XXX = {"7011", "7230", "7298", "7832", "7622", "7623", "7629", "7631", "7641", "7993"}

AUTOMOTIVE_MCCS = {"5541", "5940"}
EDUCATION_MCCS = {"8211", "8220", "8241", "8244", "8249", "8299"}
GOVERNMENT_MCCS = {"9211", "9222", "9223", "9311", "9399", "9402"}
FINANCIAL_MCCS = {"6010", "6011", "6012", "6051", "6211", "6300"}

HOME_MCCS = {
    "6513", "1520", "5021", "5039", "5200", "5211", "5231", "5251", "5261",
    "5271", "5531", "5712", "5713", "5714", "5718", "5719", "5722", "5996",
    "5998", "7641",
}


def category_from_mcc(mcc_code: str | None) -> str:
    """
    Default category for an MCC code.

    Checks run in a fixed order and the first match wins, so broad prefix
    rules (any 4xxx is Travel, any 5xxx is Shopping) shadow the narrower
    lists checked after them.
    """
    if not mcc_code:
        return UNCATEGORIZED

    mcc = str(mcc_code).strip()

    if mcc in GROCERY_MCCS:
        return "Groceries"
    if mcc in FOOD_MCCS:
        return "Food & Drinks"
    if mcc in TRAVEL_MCCS or (mcc.startswith("4") and mcc not in UTILITY_MCCS):
        return "Travel"
    if mcc in UTILITY_MCCS:
        return "Utilities"
    if mcc in SHOPPING_MCCS or mcc.startswith("5"):
        return "Shopping"
    if mcc in ENTERTAINMENT_MCCS:
        return "Entertainment"
    if mcc in HEALTH_MCCS:
        return "Health & Personal Care"
    if mcc in SERVICE_MCCS or (mcc.startswith("7") and mcc not in NON_SERVICE_7XXX):
        return "Services"
    if mcc in AUTOMOTIVE_MCCS:
        return "Automotive"
    if mcc in EDUCATION_MCCS:
        return "Education"
    if mcc in GOVERNMENT_MCCS:
        return "Government"
    if mcc in FINANCIAL_MCCS:
        return "Financial Services"
    if mcc in HOME_MCCS:
        return "Home & Rent"
    if mcc.startswith("7") or mcc.startswith("8"):
        return "Services"

    return UNCATEGORIZED


# ---- Merchant name -> category ----

FOOD_KEYWORDS = (
    "kopitiam", "hawker", "food court", "restaurant", "cafe", "coffee",
    "mcdonald", "kfc", "starbucks", "subway", "eatery", "kitchen", "canteen",
)

GROCERY_KEYWORDS = (
    "ntuc", "fairprice", "cold storage", "giant", "sheng siong", "prime",
    "supermarket", "grocery",
)


def category_from_merchant_name(merchant_name: str | None) -> str | None:
    """Keyword fallback used when a transaction has no MCC."""
    if not merchant_name:
        return None

    name = merchant_name.lower()
    if any(k in name for k in FOOD_KEYWORDS):
        return "Food & Drinks"
    if any(k in name for k in GROCERY_KEYWORDS):
        return "Groceries"
    return None


def effective_category(tx) -> str:
    """
    Category used for spending analysis and budgets:
    user override, then legacy category, then MCC, then merchant name.
    """
    if getattr(tx, "user_category", None):
        return tx.user_category

    legacy = getattr(tx, "category", None)
    if legacy and legacy != UNCATEGORIZED:
        return legacy

    mcc_code = getattr(tx, "mcc_code", None)
    if mcc_code:
        return category_from_mcc(mcc_code)

    return category_from_merchant_name(getattr(tx, "merchant_name", None)) or UNCATEGORIZED


def mcc_category(tx) -> str:
    """Category used for rewards: MCC only, user overrides ignored."""
    mcc_code = getattr(tx, "mcc_code", None)
    if mcc_code:
        return category_from_mcc(mcc_code)
    return UNCATEGORIZED


# ---- Merchant name -> MCC (airlines, hotels, travel agencies) ----

AIRLINE_MCCS = {
    "united airlines": "3000",
    "united": "3000",
    "american airlines": "3001",
    "british airways": "3005",
    "japan airlines": "3006",
    "air france": "3007",
    "lufthansa": "3008",
    "air canada": "3009",
    "klm": "3010",
    "qantas": "3012",
    "swiss international": "3015",
    "air new zealand": "3025",
    "emirates": "3026",
    "malaysia airlines": "3032",
    "etihad": "3034",
    "finnair": "3039",
    "garuda indonesia": "3041",
    "delta": "3058",
    "cathay pacific": "3099",
    "thai airways": "3135",
    "turkish airlines": "3136",
    "westjet": "3138",
    "singapore airlines": "3144",
    "scoot": "3145",
    "jetblue": "3148",
    "vietnam airlines": "3171",
    "airasia": "3176",
    "air asia": "3176",
    "airasia x": "3177",
    "jetstar": "3180",
    "virgin atlantic": "3246",
    "ryanair": "3251",
    "easyjet": "3252",
    "iberia": "3267",
}

HOTEL_MCCS = {
    "holiday inn": "3501",
    "holiday inn express": "3694",
    "best western": "3502",
    "sheraton": "3503",
    "hilton": "3504",
    "marriott": "3509",
    "jw marriott": "3596",
    "intercontinental": "3512",
    "westin": "3513",
    "pullman": "3519",
    "doubletree": "3527",
    "kempinski": "3531",
    "ibis": "3541",
    "hyatt": "3542",
    "park hyatt": "3571",
    "grand hyatt": "3572",
    "shangri-la": "3544",
    "sofitel": "3546",
    "radisson": "3558",
    "mandarin oriental": "3561",
    "ritz-carlton": "3567",
    "ritz carlton": "3567",
}

TRAVEL_AGENCY_MCCS = {
    name: "4722"
    for name in (
        "expedia", "booking", "booking.com", "agoda", "hotels.com", "kayak",
        "priceline", "trip.com", "traveloka", "klook", "skyscanner", "airbnb",
    )
}


def _longest_first(mapping: dict):
    return sorted(mapping.items(), key=lambda kv: len(kv[0]), reverse=True)


_MERCHANT_PATTERNS = [
    _longest_first(AIRLINE_MCCS),
    _longest_first(HOTEL_MCCS),
    _longest_first(TRAVEL_AGENCY_MCCS),
]


def mcc_for_merchant(merchant_name: str | None) -> str | None:
    """
    MCC for a known airline / hotel / travel agency merchant, matched by
    substring. Longer patterns win ("airasia x" before "airasia").
    """
    if not merchant_name or len(merchant_name.strip()) < 3:
        return None

    name = merchant_name.lower().strip()
    for patterns in _MERCHANT_PATTERNS:
        for pattern, mcc in patterns:
            if pattern in name:
                return mcc
    return None


# ---- Tiers / behaviour (insights) ----

SPENDING_TIERS = ("Essentials", "Lifestyle", "Other")
BEHAVIORAL_CATEGORIES = ("Convenience", "Social", "Planned", "Investment")

CATEGORY_TO_TIER = {
    "Groceries": "Essentials",
    "Housing": "Essentials",
    "Utilities": "Essentials",
    "Transportation": "Essentials",
    "Healthcare": "Essentials",
    "Health & Personal Care": "Essentials",
    "Automotive": "Essentials",
    "Home & Rent": "Essentials",
    "Dining Out": "Lifestyle",
    "Fast Food & Takeout": "Lifestyle",
    "Food Delivery": "Lifestyle",
    "Food & Drinks": "Lifestyle",
    "Entertainment": "Lifestyle",
    "Travel": "Lifestyle",
    "Travel & Vacation": "Lifestyle",
    "Shopping": "Lifestyle",
    "Clothing & Shoes": "Lifestyle",
    "Gym & Fitness": "Lifestyle",
}

CATEGORY_TO_BEHAVIOR = {
    "Food Delivery": "Convenience",
    "Fast Food & Takeout": "Convenience",
    "Subscriptions & Memberships": "Convenience",
    "Food & Drinks": "Convenience",
    "Entertainment": "Social",
    "Travel": "Social",
    "Travel & Vacation": "Social",
    "Gifts & Donations": "Social",
    "Healthcare": "Investment",
    "Health & Personal Care": "Investment",
    "Gym & Fitness": "Investment",
    "Education": "Investment",
    "Professional Development": "Investment",
}


def spending_tier(category: str) -> str:
    return CATEGORY_TO_TIER.get(category, "Other")


def behavioral_category(category: str) -> str:
    return CATEGORY_TO_BEHAVIOR.get(category, "Planned")
