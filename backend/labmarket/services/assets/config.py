from pydantic import BaseModel


class AssetConfig(BaseModel):
    """Configuration for the asset ledger collaborator."""

    paper_mode: bool = True
    symbol: str = "LAB"
