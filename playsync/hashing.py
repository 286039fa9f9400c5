"""
Canonical hashing shared with the remote service.

The remote side computes the same digests independently, so every field order,
separator and formatting rule here is part of the wire contract:

* timestamps render as UTC ``YYYY-MM-DDTHH:MM:SSZ`` (no fractional seconds),
  absent timestamps as an empty string;
* list fields are comma-joined in their original order;
* catalog-level hashes sort per-game keys ordinally and feed ``key + "|"`` into
  one incremental SHA-256.
"""
import hashlib
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from .models import GameAchievementsDto, GameSyncDto

HASH_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()

def format_hash_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(HASH_TIMESTAMP_FORMAT)

def _join(values: Optional[List[str]]) -> str:
    return ",".join(v or "" for v in values) if values else ""

def _num(value) -> str:
    return "" if value is None else str(value)

def _flag(value: bool) -> str:
    return "1" if value else "0"

def compute_game_metadata_hash(g: GameSyncDto) -> str:
    """
    SHA-256 over every DTO field except the activity fields (playtime, play count,
    last activity), which are part of the library hash key instead.
    """
    parts = [
        g.game_name or "",
        g.completion_status_id or "",
        g.completion_status_name or "",
        _flag(g.is_installed),
        _join(g.genres),
        _join(g.platforms),
        _join(g.developers),
        _join(g.publishers),
        _join(g.tags),
        _join(g.features),
        _join(g.categories),
        _join(g.series),
        _join(g.age_ratings),
        _join(g.regions),
        g.release_date or "",
        _num(g.release_year),
        _num(g.user_score),
        _num(g.critic_score),
        _num(g.community_score),
        g.source_name or "",
        _flag(g.is_favorite),
        _flag(g.is_hidden),
        format_hash_timestamp(g.date_added),
        format_hash_timestamp(g.modified),
        _num(g.achievement_count_unlocked),
        _num(g.achievement_count_total),
    ]
    return sha256_hex("|".join(parts))

def library_hash_key(g: GameSyncDto) -> str:
    return (f"{g.playnite_id or ''}:{g.playtime_seconds}:{g.play_count}:"
            f"{format_hash_timestamp(g.last_activity)}:{compute_game_metadata_hash(g)}")

def achievement_hash_key(g: GameAchievementsDto) -> str:
    achievements = g.achievements or []
    unlocked = sum(1 for a in achievements if a.is_unlocked)
    names = ",".join(sorted((a.name or "" for a in achievements), key=_ordinal))
    return f"{g.playnite_id}:{len(achievements)}:{unlocked}:{sha256_hex(names)}"

def _ordinal(key: str) -> bytes:
    # UTF-16 code unit order, matching ordinal string comparison on the server.
    return key.encode("utf-16-be")

def hash_sorted_keys(keys: Iterable[str]) -> str:
    digest = hashlib.sha256()
    for key in sorted(keys, key=_ordinal):
        digest.update(key.encode("utf-8"))
        digest.update(b"|")
    return digest.hexdigest()

def compute_library_hash(library: Iterable[GameSyncDto]) -> str:
    return hash_sorted_keys(library_hash_key(g) for g in library)

def compute_achievement_hash(games: Iterable[GameAchievementsDto]) -> str:
    return hash_sorted_keys(achievement_hash_key(g) for g in games)
