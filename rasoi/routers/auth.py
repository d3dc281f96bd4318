from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from rasoi.schemas.common import Token, SignupIn
from rasoi.util.security import create_token, hash_pw, verify_pw
from rasoi.models.core import User, UserRole
from rasoi.db import get_db

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/signup", response_model=Token)
def signup(body: SignupIn, db: Session = Depends(get_db)):
    if not body.email and not body.phone:
        raise HTTPException(status_code=422, detail="email or phone is required")
    # self sign-up only ever creates customers; riders and admins are provisioned
    u = User(name=body.name, email=body.email, phone=body.phone,
             pass_hash=hash_pw(body.password), role=UserRole.CUSTOMER)
    db.add(u)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="An account with this email or phone already exists")
    return Token(access_token=create_token(u.id, u.role), role=u.role.value)

@router.post("/login", response_model=Token)
def login(login: str, password: str, db: Session = Depends(get_db)):
    user = db.query(User).filter(or_(User.phone == login, User.email == login)).first()
    if not user or not user.active or not verify_pw(user.pass_hash, password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Token(access_token=create_token(user.id, user.role), role=user.role.value)
