# tollplaza/dependencies.py
"""
Request dependencies shared by routers.
The acting operator comes from the X-Operator-Id header set by the auth layer.
"""

from typing import Optional
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session
from tollplaza.database import get_db
from tollplaza.models.operator import Operator


def get_current_operator(x_operator_id: Optional[int] = Header(None),
                         db: Session = Depends(get_db)) -> Operator:
    if x_operator_id is None:
        raise HTTPException(status_code=401, detail="Missing X-Operator-Id header")
    operator = db.get(Operator, x_operator_id)
    if operator is None or not operator.is_active:
        raise HTTPException(status_code=403, detail=f"Operator {x_operator_id} is unknown or inactive")
    return operator
