"""Telegram message formatting for bot listings and details"""

from html import escape
from typing import Any, Dict, Optional

from fleetbot.clients.editions import EDITION_LABELS

STATUS_ICONS = {
    "running": "🟢",
    "stopped": "🔴",
    "error": "⚠️",
}


def format_minutes(minutes: Optional[int]) -> str:
    """Human readable duration, e.g. '2d 3h 15m'"""
    minutes = int(minutes or 0)
    days, rest = divmod(minutes, 1440)
    hours, mins = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    parts.append(f"{mins}m")
    return " ".join(parts)


def format_bot_line(bot: Dict[str, Any]) -> str:
    icon = STATUS_ICONS.get(bot.get("status"), "❔")
    edition = EDITION_LABELS.get(bot.get("edition"), bot.get("edition"))
    return (
        f"{icon} <b>#{bot['id']} {escape(bot['name'])}</b>\n"
        f"   {edition} {escape(bot['version'])} → {escape(bot['host'])}:{bot['port']}"
    )


def format_bot_info(info: Dict[str, Any]) -> str:
    status = info.get("status", "stopped")
    lines = [
        f"🤖 <b>Bot #{info['id']}: {escape(info['name'])}</b>",
        "",
        f"{STATUS_ICONS.get(status, '❔')} <b>Status:</b> {status}",
        f"🌐 <b>Server:</b> {escape(info['host'])}:{info['port']}",
        f"🎮 <b>Edition:</b> {EDITION_LABELS.get(info['edition'], info['edition'])}",
        f"📦 <b>Version:</b> {escape(info['version'])}",
    ]

    if info.get("connected"):
        lines.append("🔗 <b>Connection:</b> online")
        if info.get("connected_at"):
            lines.append(f"⏱️ <b>Connected since:</b> {info['connected_at'][:19].replace('T', ' ')} UTC")
        if info.get("players_online") is not None:
            lines.append(f"👥 <b>Players:</b> {info['players_online']}/{info.get('players_max', '?')}")
    elif info.get("state"):
        lines.append(f"🔗 <b>Connection:</b> {info['state']}")
        if info.get("reconnect_attempts"):
            lines.append(f"🔄 <b>Reconnect attempts:</b> {info['reconnect_attempts']}")

    if info.get("alerts"):
        lines.append(f"⚠️ <b>Warnings:</b> {info['alerts']}")

    history = info.get("history") or {}
    if history:
        lines.append("")
        lines.append(
            f"📊 {history.get('sessions', 0)} session(s), {history.get('errors', 0)} error(s), "
            f"uptime {format_minutes(history.get('total_minutes'))}"
        )
    return "\n".join(lines)


def format_admin_bot_line(bot: Dict[str, Any]) -> str:
    """Bot line with its owner, for fleet-wide listings"""
    owner = bot.get("owner") or f"#{bot.get('owner_id')}"
    return f"{format_bot_line(bot)}\n   👤 {escape(str(owner))}"


def format_user_line(user: Dict[str, Any]) -> str:
    name = escape(user.get("username") or "unknown")
    badge = " ⭐" if user.get("is_admin") else ""
    joined = (user.get("created_at") or "")[:10]
    return (
        f"👤 <b>{name}</b>{badge} (ID: {user['telegram_id']})\n"
        f"   🤖 {user.get('bots', 0)} bot(s) · 📅 {joined or '?'}"
    )
