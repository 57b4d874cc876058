from pydantic import BaseModel

class Msg(BaseModel):
    message: str

class ErrorDetail(BaseModel):
    code: str
    message: str

class ErrorOut(BaseModel):
    error: ErrorDetail
