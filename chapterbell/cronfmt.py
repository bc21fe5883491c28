"""Human-readable descriptions of five-field cron expressions."""
from __future__ import annotations

DAY_NAMES = {
    "0": "Sunday",
    "1": "Monday",
    "2": "Tuesday",
    "3": "Wednesday",
    "4": "Thursday",
    "5": "Friday",
    "6": "Saturday",
    "7": "Sunday",
}

MONTH_NAMES = {
    "1": "January",
    "2": "February",
    "3": "March",
    "4": "April",
    "5": "May",
    "6": "June",
    "7": "July",
    "8": "August",
    "9": "September",
    "10": "October",
    "11": "November",
    "12": "December",
}


def describe_cron(expr: str | None) -> str:
    """Describe common cron shapes in words; anything else is shown verbatim."""
    if not expr:
        return "Unknown schedule"
    parts = expr.split()
    if len(parts) != 5:
        return f"Custom schedule: {expr}"

    minute, hour, dom, month, dow = parts
    rest_any = dom == "*" and month == "*" and dow == "*"

    if minute == "*" and hour == "*" and rest_any:
        return "Every minute"
    if minute.startswith("*/") and hour == "*" and rest_any:
        return f"Every {minute[2:]} minutes"
    if minute != "*" and hour == "*" and rest_any:
        return f"Every hour at minute {minute.zfill(2)}"
    if minute != "*" and hour.startswith("*/") and rest_any:
        return f"Every {hour[2:]} hours at :{minute.zfill(2)}"

    if minute == "*" or hour == "*":
        return f"Custom schedule: {expr}"
    time = f"{hour.zfill(2)}:{minute.zfill(2)}"
    if rest_any:
        return f"Daily at {time}"
    if dom == "*" and month == "*":
        return f"Weekly on {DAY_NAMES.get(dow, f'day {dow}')} at {time}"
    if dom != "*" and month == "*" and dow == "*":
        return f"Monthly on day {dom} at {time}"
    if dom != "*" and month != "*" and dow == "*":
        return f"Yearly on {MONTH_NAMES.get(month, f'month {month}')} {dom} at {time}"
    return f"Custom schedule: {expr}"
