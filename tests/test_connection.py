import pytest
from sqlalchemy.exc import IntegrityError

from coach.core.exceptions import DatabaseError
from coach.database.models import Role, User
from tests.helpers import make_user


def test_failed_commit_raises_database_error(db):
    user_id = make_user(db)

    with pytest.raises(DatabaseError) as exc_info:
        with db.get_session() as session:
            session.add(User(id=user_id, role=Role.USER.value))

    assert isinstance(exc_info.value.__cause__, IntegrityError)
    assert exc_info.value.to_dict()["error"] == "DATABASE_ERROR"
    assert exc_info.value.status_code == 503


def test_failed_unit_of_work_is_rolled_back(db):
    user_id = make_user(db)

    with pytest.raises(DatabaseError):
        with db.get_session() as session:
            session.add(User(role=Role.USER.value, name="Never saved"))
            session.flush()
            session.add(User(id=user_id, role=Role.USER.value))
            session.flush()

    with db.get_session() as session:
        assert session.query(User).filter(User.name == "Never saved").count() == 0


def test_non_database_errors_pass_through(db):
    with pytest.raises(KeyError):
        with db.get_session() as session:
            session.add(User(role=Role.USER.value, name="Also rolled back"))
            raise KeyError("boom")

    with db.get_session() as session:
        assert session.query(User).filter(User.name == "Also rolled back").count() == 0


def test_check_connection(db):
    assert db.check_connection() is True
