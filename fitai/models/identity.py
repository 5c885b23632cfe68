from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """Authenticated caller, resolved once per request from the Clerk session."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
