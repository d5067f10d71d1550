from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .datasource_config import (
    API_KEY,
    DataSourceConfig,
    SecureJsonFields,
    is_configured,
    mark_persisted,
    pending_key,
)
from .models import DataSourceRecord, DataSourceSecret

logger = logging.getLogger(__name__)


async def _get_record(session: AsyncSession, uid: str) -> Optional[DataSourceRecord]:
    stmt = select(DataSourceRecord).where(DataSourceRecord.uid == uid)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _find_secret(record: DataSourceRecord, key: str) -> Optional[DataSourceSecret]:
    for secret in record.secrets:
        if secret.key == key:
            return secret
    return None


def _to_config(record: Optional[DataSourceRecord]) -> DataSourceConfig:
    if record is None:
        return DataSourceConfig()
    fields = record.secure_json_fields()
    return DataSourceConfig(
        json_data=dict(record.json_data or {}),
        secure_json_fields=SecureJsonFields(api_key=fields.get(API_KEY, False)),
    )


async def load_config(session: AsyncSession, uid: str) -> DataSourceConfig:
    """Stored config with presence flags only; secret values are not loaded into it."""
    return _to_config(await _get_record(session, uid))


async def load_secrets(session: AsyncSession, uid: str) -> Dict[str, str]:
    record = await _get_record(session, uid)
    if record is None:
        return {}
    return {secret.key: secret.value for secret in record.secrets}


async def save_config(
    session: AsyncSession, uid: str, config: DataSourceConfig
) -> DataSourceConfig:
    """Persist a save payload and return the config the editor should now see.

    A non-empty pending key replaces the stored one. The reset pair (flag
    false, empty value) removes it. Anything else keeps the stored key.
    """
    record = await _get_record(session, uid)
    if record is None:
        record = DataSourceRecord(uid=uid, json_data={}, secrets=[])
        session.add(record)
    record.json_data = dict(config.json_data)

    stored = _find_secret(record, API_KEY)
    new_value = pending_key(config)
    if new_value is not None:
        if stored is None:
            record.secrets.append(DataSourceSecret(key=API_KEY, value=new_value))
        else:
            stored.value = new_value
        logger.info("Stored API key for data source %s", uid)
    elif config.secure_json_data.api_key == "" and not is_configured(config):
        if stored is not None:
            record.secrets.remove(stored)
            logger.info("Removed API key for data source %s", uid)

    has_key = _find_secret(record, API_KEY) is not None
    await session.commit()
    return mark_persisted(config, stored=has_key)
