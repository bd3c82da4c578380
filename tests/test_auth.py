"""
Tests para endpoints de autenticación
"""
from fastapi import status
from jose import jwt

from realtychat.config import get_settings
from realtychat.errors import AuthError
from realtychat.security import TokenVerifier, create_access_token
import pytest

def test_signup_success(client):
    """Test de registro exitoso"""
    response = client.post("/auth/signup", json={
        "name": "Test User",
        "email": "newuser@example.com",
        "password": "password123",
    })
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert "id" in data
    assert data["email"] == "newuser@example.com"
    assert data["role"] == "user"
    assert "password" not in data and "password_hash" not in data

def test_signup_duplicate_email(client):
    """Test de registro con email duplicado"""
    client.post("/auth/signup", json={
        "name": "User 1",
        "email": "duplicate@example.com",
        "password": "pass123"
    })
    response = client.post("/auth/signup", json={
        "name": "User 2",
        "email": "Duplicate@example.com",
        "password": "pass456"
    })
    assert response.status_code == status.HTTP_409_CONFLICT

def test_signup_weak_password(client):
    """Test de registro con contraseña débil"""
    response = client.post("/auth/signup", json={
        "name": "Test User",
        "email": "weak@example.com",
        "password": "123"
    })
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

def test_signup_invalid_phone(client):
    """Test de registro con teléfono inválido"""
    response = client.post("/auth/signup", json={
        "name": "Test User",
        "email": "invalidphone@example.com",
        "password": "password123",
        "phone": "123"
    })
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

def test_login_success(client):
    """Test de login exitoso"""
    client.post("/auth/signup", json={
        "name": "Test User",
        "email": "login@example.com",
        "password": "password123"
    })
    response = client.post("/auth/login", json={
        "email": "login@example.com",
        "password": "password123"
    })
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["token_type"] == "bearer"
    assert TokenVerifier(get_settings().jwt_secret).verify(data["access_token"]) == data["user_id"]

def test_login_wrong_password(client):
    """Test de login con contraseña incorrecta"""
    client.post("/auth/signup", json={
        "name": "Test User",
        "email": "wrongpass@example.com",
        "password": "correct123"
    })
    response = client.post("/auth/login", json={
        "email": "wrongpass@example.com",
        "password": "wrongpassword"
    })
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

def test_login_nonexistent_user(client):
    """Test de login con usuario inexistente"""
    response = client.post("/auth/login", json={
        "email": "nonexistent@example.com",
        "password": "anypassword"
    })
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

def test_token_verifier_rejects_bad_tokens():
    verifier = TokenVerifier("secreto")
    with pytest.raises(AuthError):
        verifier.verify(None)
    with pytest.raises(AuthError):
        verifier.verify("no.es.jwt")
    with pytest.raises(AuthError):
        # Firmado con otro secreto
        verifier.verify(create_access_token("507f1f77bcf86cd799439011"))
    with pytest.raises(AuthError):
        verifier.verify(jwt.encode({"foo": "bar"}, "secreto", algorithm="HS256"))
    with pytest.raises(AuthError):
        verifier.verify(create_access_token("u1", expires_hours=-1))

def test_token_verifier_accepts_valid_token():
    token = create_access_token("507f1f77bcf86cd799439011")
    assert TokenVerifier(get_settings().jwt_secret).verify(token) == "507f1f77bcf86cd799439011"
