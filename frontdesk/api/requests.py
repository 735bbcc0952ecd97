"""Request body parsing shared by the control-plane routers."""
from typing import Type, TypeVar

from fastapi import HTTPException, Request
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def parse_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse a JSON object body; anything malformed is a 400, not a 422."""
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid request body")
