from fastapi import APIRouter, HTTPException, status

from api.deps import CurrentUserDep, StoreDep
from schemas.auth import LoginRequest, LoginResponse, SignupRequest, UserProfile
from services.auth_service import EmailTakenError, authenticate, create_access_token, create_user

router = APIRouter()


@router.post("/signup", response_model=LoginResponse)
def signup(payload: SignupRequest, store: StoreDep):
    try:
        user = create_user(store, payload)
    except EmailTakenError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered.")
    token = create_access_token(sub=user.uid, role=user.role, email=user.email)
    return LoginResponse(access_token=token, token_type="bearer", role=user.role, email=user.email)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, store: StoreDep):
    user = authenticate(store, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
    token = create_access_token(sub=str(user["uid"]), role=user["role"], email=user["email"])
    return LoginResponse(access_token=token, token_type="bearer", role=user["role"], email=user["email"])


@router.get("/me", response_model=UserProfile)
def me(user: CurrentUserDep):
    return user
