from __future__ import annotations

from stockbot.schemas.price import PriceAlert


def _bold(text: str, markdown: bool) -> str:
    return f"*{text}*" if markdown else text


def format_summary(prices: dict[str, str], *, markdown: bool = False) -> str:
    lines = [f"📊 {_bold('Daily Stock Report', markdown)}", ""]
    for symbol in sorted(prices):
        lines.append(f"{_bold(symbol, markdown)}: {prices[symbol]}")
    return "\n".join(lines) + "\n"


def format_alerts(alerts: list[PriceAlert], *, markdown: bool = False) -> str:
    lines = [f"⚠️ {_bold('Significant Price Changes Detected', markdown)}", ""]
    for alert in alerts:
        direction = "🟢 Increased" if alert.direction == "UP" else "🔴 Decreased"
        change = _bold(f"{abs(alert.percent_change):.2f}%", markdown)
        lines.append(f"{_bold(alert.symbol, markdown)}: {direction} by {change}")
        lines.append(f"Previous: ${alert.previous_price:.2f} → Current: ${alert.current_price:.2f}")
        lines.append("")
    return "\n".join(lines)
