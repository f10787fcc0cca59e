"""
Shared pytest fixtures for the Ideku workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - org: Divisions, departments, roles, levels and approvers
    - make_workflow / make_idea: builders for workflow definitions and ideas
"""

from types import SimpleNamespace

import pytest

from ideku import create_app
from ideku.models import db as _db
from ideku.models.idea import Idea
from ideku.models.organization import Category, Department, Division, Role, User
from ideku.models.workflow import Level, LevelApprover, Workflow, WorkflowCondition, WorkflowStage


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Helpers ──────────────────────────────────────────────────────────────


def make_user(username, role, division_id=None, department_id=None, **kwargs) -> User:
    u = User(
        username=username,
        name=username.replace(".", " ").title(),
        email=f"{username}@example.com",
        role_id=role.id,
        division_id=division_id,
        department_id=department_id,
        **kwargs,
    )
    _db.session.add(u)
    _db.session.flush()
    return u


# ── Organisation fixture ─────────────────────────────────────────────────


@pytest.fixture()
def org():
    """
    Two divisions with departments and one approver per level:

        level        role         user          location
        Workstream   WS Leader    ws.lead       D01 / P01
        Department   Mgr Dept     dept.mgr      D01 / P01
        Division     GM Division  gm.div        D01 / -
        Finance      GM Finance   gm.fin        D01 / P01
        Executive    COO          coo           -   / -
    """
    d01 = Division(id="D01", name="Operations")
    d02 = Division(id="D02", name="Finance")
    _db.session.add_all([d01, d02])
    _db.session.flush()
    p01 = Department(id="P01", division_id="D01", name="Production")
    p02 = Department(id="P02", division_id="D01", name="Maintenance")
    f01 = Department(id="F01", division_id="D02", name="Accounting")
    _db.session.add_all([p01, p02, f01])

    cat = Category(name="Cost Reduction")
    _db.session.add(cat)

    roles = {}
    for name in ("Superuser", "Initiator", "WS Leader", "Mgr Dept", "GM Division", "GM Finance", "COO"):
        roles[name] = Role(name=name)
        _db.session.add(roles[name])
    _db.session.flush()

    levels = {}
    for level_name, role_name in (
        ("Workstream", "WS Leader"),
        ("Department", "Mgr Dept"),
        ("Division", "GM Division"),
        ("Finance", "GM Finance"),
        ("Executive", "COO"),
    ):
        level = Level(name=level_name)
        _db.session.add(level)
        _db.session.flush()
        _db.session.add(LevelApprover(level_id=level.id, role_id=roles[role_name].id))
        levels[level_name] = level
    _db.session.flush()

    users = SimpleNamespace(
        initiator=make_user("ini.tiator", roles["Initiator"], "D01", "P01"),
        ws_lead=make_user("ws.lead", roles["WS Leader"], "D01", "P01"),
        dept_mgr=make_user("dept.mgr", roles["Mgr Dept"], "D01", "P01"),
        gm_div=make_user("gm.div", roles["GM Division"], "D01", None),
        gm_fin=make_user("gm.fin", roles["GM Finance"], "D01", "P01"),
        coo=make_user("coo", roles["COO"]),
        admin=make_user("super.user", roles["Superuser"]),
    )
    _db.session.commit()
    return SimpleNamespace(
        category=cat,
        divisions={"D01": d01, "D02": d02},
        departments={"P01": p01, "P02": p02, "F01": f01},
        roles=roles,
        levels=levels,
        users=users,
    )


@pytest.fixture()
def make_workflow(org):
    """Build a workflow directly via the ORM.

    stages: list of level names, or (level_name, is_mandatory, is_parallel)
    tuples; numbered 1..n unless ``numbers`` is given.
    conditions: list of (condition_type, operator, value) tuples.
    """

    def _make(name="WF", *, stages=("Workstream", "Department"), conditions=(),
              priority=1, is_active=True, numbers=None):
        wf = Workflow(name=name, priority=priority, is_active=is_active)
        _db.session.add(wf)
        _db.session.flush()
        for i, entry in enumerate(stages):
            level_name, mandatory, parallel = (entry, True, False) if isinstance(entry, str) else entry
            _db.session.add(WorkflowStage(
                workflow_id=wf.id,
                stage=numbers[i] if numbers else i + 1,
                level_id=org.levels[level_name].id,
                is_mandatory=mandatory,
                is_parallel=parallel,
            ))
        for ctype, op, value in conditions:
            _db.session.add(WorkflowCondition(
                workflow_id=wf.id, condition_type=ctype, operator=op, condition_value=value,
            ))
        _db.session.commit()
        return wf

    return _make


@pytest.fixture()
def make_idea(org):
    """Build a Draft idea directly via the ORM."""

    def _make(*, name="Reduce scrap", saving_cost=10_000, division="D01", department="P01",
              event_id=None, **kwargs):
        idea = Idea(
            idea_name=name,
            initiator_user_id=org.users.initiator.id,
            category_id=org.category.id,
            target_division_id=division,
            target_department_id=department,
            saving_cost=saving_cost,
            event_id=event_id,
            **kwargs,
        )
        _db.session.add(idea)
        _db.session.flush()
        idea.idea_code = f"IMS-{idea.id:07d}"
        _db.session.commit()
        return idea

    return _make


@pytest.fixture()
def new_user(org):
    """Create an extra user: ``new_user("stand.in", "Initiator", "D02", "F01")``."""

    def _make(username, role_name, division_id=None, department_id=None, **kwargs):
        user = make_user(username, org.roles[role_name], division_id, department_id, **kwargs)
        _db.session.commit()
        return user

    return _make
