from pydantic import BaseModel


class ImportSummaryResponse(BaseModel):
    imported: int
    errors: int
    duplicated: int
    skipped: int


class DeleteResponse(BaseModel):
    deleted: bool
