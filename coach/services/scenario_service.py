"""
Scenario Service - Read access to conversation scenarios.
"""
from typing import Any, Dict, List, Optional

from coach.core.exceptions import NotFoundError
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import Scenario


class ScenarioService:
    def __init__(self, db: Optional[DatabaseConnection] = None):
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database()

    def list_active(self) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            scenarios = (
                session.query(Scenario)
                .filter(Scenario.is_active.is_(True))
                .order_by(Scenario.name.asc())
                .all()
            )
            return [s.summary() for s in scenarios]

    def get(self, scenario_id: int) -> Dict[str, Any]:
        with self.db.get_session() as session:
            scenario = session.get(Scenario, scenario_id)
            if scenario is None:
                raise NotFoundError("Scenario not found")
            return scenario.summary()


_scenario_service: Optional[ScenarioService] = None


def get_scenario_service() -> ScenarioService:
    """Get or create the scenario service instance."""
    global _scenario_service
    if _scenario_service is None:
        _scenario_service = ScenarioService()
    return _scenario_service
