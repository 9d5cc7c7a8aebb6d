from sqlmodel import Session, select

from conftest import PASSWORD, login, test_engine
from examroom.models import Profile


def _signup(client, **overrides):
    data = {"full_name": "New Person", "email": "new@example.com", "password": "hunter22", "role": "student"}
    data.update(overrides)
    return client.post("/auth/signup", data=data, follow_redirects=False)


def _profiles():
    with Session(test_engine) as session:
        return session.exec(select(Profile)).all()


def test_signup_creates_profile_and_signs_in(client):
    response = _signup(client, role="teacher")
    assert response.status_code == 303
    assert response.headers["location"] == "/teacher"
    profiles = _profiles()
    assert len(profiles) == 1
    assert profiles[0].role == "teacher"
    assert profiles[0].password_hash != "hunter22"
    assert client.get("/teacher", follow_redirects=False).status_code == 200


def test_signup_validation_writes_nothing(client):
    for overrides, message in [
        ({"full_name": ""}, "Full name is required"),
        ({"email": "not-an-email"}, "valid email"),
        ({"password": "123"}, "at least 6"),
        ({"role": "admin"}, "teacher or a student"),
    ]:
        response = _signup(client, **overrides)
        assert response.status_code == 400
        assert message in response.text
    assert _profiles() == []


def test_signup_rejects_duplicate_email(client, student):
    response = _signup(client, email=student.email.upper())
    assert response.status_code == 400
    assert "already registered" in response.text
    assert len(_profiles()) == 1


def test_login_redirects_by_role(client, teacher, student):
    assert login(client, teacher.email).headers["location"] == "/teacher"
    client.get("/auth/logout")
    assert login(client, student.email).headers["location"] == "/student"


def test_login_with_wrong_password(client, student):
    response = client.post("/auth/login", data={"email": student.email, "password": PASSWORD + "x"})
    assert response.status_code == 400
    assert "Invalid email or password" in response.text


def test_pages_require_login(client):
    for url in ("/teacher", "/student", "/student/exams", "/teacher/exams"):
        response = client.get(url, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/login"


def test_wrong_role_is_sent_home(student_client):
    response = student_client.get("/teacher", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/?error=access_denied"
    home = student_client.get("/?error=access_denied")
    assert "do not have access" in home.text


def test_logout_clears_session(student_client):
    student_client.get("/auth/logout")
    response = student_client.get("/student", follow_redirects=False)
    assert response.headers["location"] == "/auth/login"
