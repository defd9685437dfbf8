from pydantic import BaseModel


class MeResponse(BaseModel):
    id: str
    email: str | None

    class Config:
        from_attributes = True
