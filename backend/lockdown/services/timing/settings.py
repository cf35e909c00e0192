"""Admin-tunable game settings.

Settings live in the ``game_settings`` table as key/value rows; keys with no
row fall back to the ``DEFAULT_*`` values in the app config. Every timer
operation calls :func:`load_settings` for a fresh snapshot, so an admin change
applies to the next operation without a restart. Already-flushed rows are
never recalculated.
"""

from dataclasses import dataclass, fields
from typing import Optional

from flask import current_app

from lockdown import db
from lockdown.errors import InvalidSetting
from lockdown.models import GameSetting


@dataclass(frozen=True)
class GameSettings:
    skip_enabled: bool = True
    max_skips_per_team: int = 3
    skip_penalty_seconds: int = 300
    hint_penalty_seconds: int = 120
    time_per_question_seconds: int = 0
    allow_skip_return: bool = True


# key -> (type, config default name, description)
SETTING_DEFS = {
    'skip_enabled': ('boolean', 'DEFAULT_SKIP_ENABLED', 'Allow teams to skip questions'),
    'max_skips_per_team': ('integer', 'DEFAULT_MAX_SKIPS_PER_TEAM', 'Maximum number of skips allowed per team'),
    'skip_penalty_seconds': ('integer', 'DEFAULT_SKIP_PENALTY_SEC', 'Time penalty in seconds per skip'),
    'hint_penalty_seconds': ('integer', 'DEFAULT_HINT_PENALTY_SEC', 'Base time penalty in seconds per hint'),
    'time_per_question_seconds': ('integer', 'DEFAULT_TIME_PER_QUESTION_SEC', 'Advisory per-question time limit, 0 = none'),
    'allow_skip_return': ('boolean', 'DEFAULT_ALLOW_SKIP_RETURN', 'Allow teams to return to skipped questions'),
}

_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off')


def parse_value(key: str, raw):
    if key not in SETTING_DEFS:
        raise InvalidSetting(f'unknown setting {key!r}')
    kind = SETTING_DEFS[key][0]
    if kind == 'boolean':
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise InvalidSetting(f'{key} expects a boolean, got {raw!r}')
    if isinstance(raw, bool):
        raise InvalidSetting(f'{key} expects an integer, got {raw!r}')
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise InvalidSetting(f'{key} expects an integer, got {raw!r}')
    if value < 0:
        raise InvalidSetting(f'{key} must not be negative')
    return value


def _serialize(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def default_settings(config=None) -> GameSettings:
    cfg = config if config is not None else current_app.config
    values = {}
    for f in fields(GameSettings):
        _, config_name, _ = SETTING_DEFS[f.name]
        if config_name in cfg:
            values[f.name] = parse_value(f.name, cfg[config_name])
    return GameSettings(**values)


def load_settings() -> GameSettings:
    """Fresh snapshot: config defaults overridden by stored rows."""
    base = default_settings()
    overrides = {}
    for row in GameSetting.query.all():
        if row.setting_key not in SETTING_DEFS:
            continue
        try:
            overrides[row.setting_key] = parse_value(row.setting_key, row.setting_value)
        except InvalidSetting:
            current_app.logger.warning(
                f"[settings-invalid] key={row.setting_key} value={row.setting_value!r} using default"
            )
    return GameSettings(**{**base.__dict__, **overrides})


def describe_settings() -> list:
    current = load_settings()
    rows = {row.setting_key: row for row in GameSetting.query.all()}
    out = []
    for key, (kind, _, description) in SETTING_DEFS.items():
        row = rows.get(key)
        out.append({
            'key': key,
            'value': getattr(current, key),
            'type': kind,
            'description': description,
            'is_default': row is None,
            'updated_by': row.updated_by if row else None,
        })
    return out


def update_setting(key: str, raw_value, admin_id: Optional[str] = None) -> dict:
    value = parse_value(key, raw_value)
    kind, _, description = SETTING_DEFS[key]
    row = GameSetting.query.filter_by(setting_key=key).first()
    previous = row.setting_value if row else None
    if row is None:
        row = GameSetting(setting_key=key, setting_type=kind, description=description)
    row.setting_value = _serialize(value)
    row.updated_by = admin_id
    db.session.add(row)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[settings-update-failed] key={key}")
        raise
    current_app.logger.info(f"[settings-update] key={key} from={previous} to={row.setting_value} by={admin_id}")
    return {'key': key, 'value': value, 'type': kind, 'updated_by': admin_id}


def seed_default_settings() -> None:
    """Insert a row for every known key that has none yet."""
    defaults = default_settings()
    existing = {row.setting_key for row in GameSetting.query.all()}
    for key, (kind, _, description) in SETTING_DEFS.items():
        if key in existing:
            continue
        db.session.add(GameSetting(
            setting_key=key,
            setting_value=_serialize(getattr(defaults, key)),
            setting_type=kind,
            description=description,
        ))
    db.session.commit()
