import os
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import ConfigurationMissing
from app.models.clubready_config import ClubReadyConfig as ClubReadyConfigRow


@dataclass(frozen=True)
class ClubReadyConfig:
    api_key: str
    store_id: str
    chain_id: str
    api_url: str

    def __repr__(self) -> str:
        # keep the key out of tracebacks and log lines
        return (
            f"ClubReadyConfig(store_id={self.store_id!r}, chain_id={self.chain_id!r}, "
            f"api_url={self.api_url!r})"
        )


def _build(api_key, store_id, chain_id, api_url) -> ClubReadyConfig:
    values = [str(v).strip() if v is not None else "" for v in (api_key, store_id, chain_id, api_url)]
    if not all(values):
        raise ConfigurationMissing()

    api_key, store_id, chain_id, api_url = values
    return ClubReadyConfig(
        api_key=api_key,
        store_id=store_id,
        chain_id=chain_id,
        api_url=api_url.rstrip("/"),
    )


def _from_env() -> ClubReadyConfig:
    return _build(
        os.getenv("CLUBREADY_API_KEY"),
        os.getenv("CLUBREADY_STORE_ID"),
        os.getenv("CLUBREADY_CHAIN_ID"),
        os.getenv("CLUBREADY_API_URL"),
    )


def _from_db(db: Session) -> ClubReadyConfig:
    try:
        row = db.query(ClubReadyConfigRow).filter(ClubReadyConfigRow.id == 1).first()
    except SQLAlchemyError as e:
        raise ConfigurationMissing(details={"reason": str(e)}) from e

    if not row:
        raise ConfigurationMissing()

    return _build(row.api_key, row.store_id, row.chain_id, row.api_url)


def get_clubready_config(db: Session) -> ClubReadyConfig:
    source = (os.getenv("CLUBREADY_CONFIG_SOURCE") or "database").strip().lower()
    if source in {"env", "environment"}:
        return _from_env()
    return _from_db(db)
