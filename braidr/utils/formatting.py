FEET_PER_MILE = 5280

def format_price(price: float) -> str:
    return f"${price:.2f}"

def format_duration(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours} hr"
    return f"{hours}h {mins}m"

def format_miles(miles: float) -> str:
    """Feet under a mile, otherwise miles to one decimal."""
    if miles < 1:
        return f"{miles * FEET_PER_MILE:.0f} ft"
    return f"{miles:.1f} mi"
