"""ProposalService: creation, the token response protocol and owner visibility.

Coverage:
- create_proposal()   : one response per recipient, atomic failure, retries
- respond()           : yes/no overwrite, invalid answers and tokens
- propose_alternate() : stores and later clears the suggestion
- list_responses()    : owner only, never exposes tokens
- concurrency         : racing answers on one token leave one consistent row
- delete / soft delete: tokens stop working
"""

import threading
from datetime import date, datetime, time

import pytest

from bluemoon.domain.proposals.schemas import AlternateProposal, ProposalCreate
from bluemoon.domain.proposals.service import INVALID_LINK_MESSAGE, ProposalService
from bluemoon.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from bluemoon.models import MeetingProposal, ProposalResponse
from bluemoon.security_utils import generate_response_token

pytestmark = pytest.mark.unit


def _payload(group, recipients=("alice@example.com", "bob@example.com"), **overrides):
    data = {
        "groupId": group.id,
        "title": "Quarterly planning",
        "description": "Bring your roadmap",
        "proposedDate": "2026-11-03",
        "proposedTime": "18:30",
        "recipients": list(recipients),
    }
    data.update(overrides)
    return ProposalCreate.model_validate(data)


def _tokens(db, proposal_id):
    rows = (
        db.query(ProposalResponse)
        .filter(ProposalResponse.proposal_id == proposal_id)
        .order_by(ProposalResponse.id)
        .all()
    )
    return {r.user_email: r.response_token for r in rows}


@pytest.fixture
def service(db):
    return ProposalService(db)


@pytest.fixture
def proposal(service, group, owner):
    return service.create_proposal(_payload(group), owner)


class TestCreateProposal:
    def test_one_pending_response_per_recipient(self, db, service, proposal):
        responses = db.query(ProposalResponse).filter_by(proposal_id=proposal.id).all()
        assert sorted(r.user_email for r in responses) == ["alice@example.com", "bob@example.com"]
        assert {r.response for r in responses} == {"pending"}
        assert len({r.response_token for r in responses}) == 2
        assert proposal.status == "pending"

    def test_registered_recipient_is_linked(self, db, service, group, owner, other_user):
        created = service.create_proposal(_payload(group, recipients=["Someone.Else@Example.com"]), owner)
        response = db.query(ProposalResponse).filter_by(proposal_id=created.id).one()
        assert response.user_id == other_user.id
        assert response.user_name == "Sam Else"
        assert response.user_email == "someone.else@example.com"

    def test_unregistered_recipient_uses_email_as_name(self, db, proposal):
        response = db.query(ProposalResponse).filter_by(user_email="alice@example.com").one()
        assert response.user_id is None
        assert response.user_name == "alice@example.com"

    def test_duplicate_recipient_creates_nothing(self, db, service, group, owner):
        payload = _payload(group, recipients=["carol@example.com", "dave@example.com", "CAROL@example.com"])

        with pytest.raises(ConflictError) as exc_info:
            service.create_proposal(payload, owner)

        assert exc_info.value.retryable is False
        assert db.query(MeetingProposal).count() == 0
        assert db.query(ProposalResponse).count() == 0

    def test_unknown_group(self, service, owner):
        class Missing:
            id = 9999

        with pytest.raises(NotFoundError):
            service.create_proposal(_payload(Missing), owner)

    def test_soft_deleted_group(self, db, service, group, owner):
        group.deleted_at = datetime.utcnow()
        db.commit()
        with pytest.raises(NotFoundError):
            service.create_proposal(_payload(group), owner)

    def test_title_markup_is_stripped(self, service, group, owner):
        created = service.create_proposal(_payload(group, title="<b>Standup</b>"), owner)
        assert created.title == "Standup"

    def test_title_of_only_markup_is_rejected(self, db, service, group, owner):
        with pytest.raises(ValidationError):
            service.create_proposal(_payload(group, title="<script></script>"), owner)
        assert db.query(MeetingProposal).count() == 0

    def test_token_collision_is_retried(self, db, group, owner):
        colliding = iter(["e" * 64, "e" * 64])

        def factory():
            return next(colliding, None) or generate_response_token()

        service = ProposalService(db, token_factory=factory)
        created = service.create_proposal(_payload(group), owner)

        assert db.query(MeetingProposal).count() == 1
        assert len(set(_tokens(db, created.id).values())) == 2

    def test_persistent_collision_gives_up(self, db, group, owner):
        service = ProposalService(db, token_factory=lambda: "f" * 64)
        with pytest.raises(ConflictError):
            service.create_proposal(_payload(group), owner)
        assert db.query(MeetingProposal).count() == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"recipients": []},
            {"recipients": ["not-an-email"]},
            {"recipients": [""]},
            {"title": "   "},
            {"proposedDate": "someday"},
            {"proposedTime": "25:99"},
        ],
    )
    def test_invalid_payloads_are_rejected(self, group, overrides):
        with pytest.raises(ValueError):
            _payload(group, **overrides)


class TestResponseProtocol:
    def test_yes_then_no_overwrites(self, db, service, proposal):
        token = _tokens(db, proposal.id)["alice@example.com"]

        first = service.respond(token, "yes")
        assert first.response == "yes"
        assert first.responded_at is not None

        second = service.respond(token, "no")
        assert second.response == "no"

    def test_repeat_answer_is_idempotent(self, db, service, proposal):
        token = _tokens(db, proposal.id)["alice@example.com"]
        service.respond(token, "yes")
        assert service.respond(token, "yes").response == "yes"

    def test_only_the_token_holders_row_changes(self, db, service, proposal):
        tokens = _tokens(db, proposal.id)
        service.respond(tokens["alice@example.com"], "yes")

        db.expire_all()
        bob = db.query(ProposalResponse).filter_by(user_email="bob@example.com").one()
        assert bob.response == "pending"

    def test_yes_alternate_no_clears_alternate_fields(self, db, service, proposal):
        token = _tokens(db, proposal.id)["alice@example.com"]
        service.respond(token, "yes")

        alternate = service.propose_alternate(
            token,
            AlternateProposal.model_validate(
                {"date": "2026-11-05", "time": "09:15", "message": "Mornings work better"}
            ),
        )
        assert alternate.response == "alternate"
        assert alternate.alternate_date == date(2026, 11, 5)
        assert alternate.alternate_time == time(9, 15)
        assert alternate.alternate_message == "Mornings work better"

        final = service.respond(token, "no")
        assert final.response == "no"
        assert final.alternate_date is None
        assert final.alternate_time is None
        assert final.alternate_message is None

    def test_alternate_message_is_sanitized(self, db, service, proposal):
        token = _tokens(db, proposal.id)["bob@example.com"]
        response = service.propose_alternate(
            token,
            AlternateProposal.model_validate(
                {"date": "2026-11-06", "time": "12:00", "message": "<img src=x onerror=alert(1)>Lunch?"}
            ),
        )
        assert response.alternate_message == "Lunch?"

    @pytest.mark.parametrize("answer", [None, "", "maybe", "YES", "alternate", "pending"])
    def test_invalid_answer(self, db, service, proposal, answer):
        token = _tokens(db, proposal.id)["alice@example.com"]
        with pytest.raises(ValidationError):
            service.respond(token, answer)

        db.expire_all()
        assert db.query(ProposalResponse).filter_by(response_token=token).one().response == "pending"

    @pytest.mark.parametrize("token", ["0" * 64, "short", "Z" * 64, ""])
    def test_unknown_token(self, service, proposal, token):
        with pytest.raises(NotFoundError) as exc_info:
            service.respond(token, "yes")
        assert exc_info.value.message == INVALID_LINK_MESSAGE

    def test_token_context_shows_current_answer(self, db, service, proposal, owner):
        token = _tokens(db, proposal.id)["alice@example.com"]
        service.respond(token, "yes")

        context = service.get_token_context(token)
        assert context.title == "Quarterly planning"
        assert context.groupName == "Book Club"
        assert context.proposedByName == owner.name
        assert context.currentResponse == "yes"
        assert "response_token" not in context.model_dump_json()
        assert token not in context.model_dump_json()


class TestVisibility:
    def test_owner_sees_all_responses_without_tokens(self, db, service, proposal, owner):
        tokens = _tokens(db, proposal.id)
        service.respond(tokens["alice@example.com"], "yes")

        result = service.list_responses(proposal.id, owner)
        assert len(result.responses) == 2
        assert result.summary.yes == 1
        assert result.summary.pending == 1

        dumped = result.model_dump_json()
        for token in tokens.values():
            assert token not in dumped

    def test_non_owner_is_forbidden(self, service, proposal, other_user):
        with pytest.raises(ForbiddenError):
            service.list_responses(proposal.id, other_user)

    def test_missing_proposal(self, service, owner):
        with pytest.raises(NotFoundError):
            service.list_responses(424242, owner)

    def test_list_proposals_only_returns_own(self, service, proposal, owner, other_user):
        assert [p.id for p in service.list_proposals(owner)] == [proposal.id]
        assert service.list_proposals(other_user) == []

    def test_status_is_set_by_owner_only(self, db, service, proposal, owner, other_user):
        tokens = _tokens(db, proposal.id)
        for token in tokens.values():
            service.respond(token, "yes")

        # Unanimous answers do not change the status on their own
        assert service.get_owned_proposal(proposal.id, owner).status == "pending"

        with pytest.raises(ForbiddenError):
            service.set_status(proposal.id, "accepted", other_user)
        assert service.set_status(proposal.id, "accepted", owner).status == "accepted"


class TestTokenInvalidation:
    def test_deleting_proposal_invalidates_tokens(self, db, service, proposal, owner):
        tokens = _tokens(db, proposal.id)
        service.delete_proposal(proposal.id, owner)

        assert db.query(ProposalResponse).count() == 0
        for token in tokens.values():
            with pytest.raises(NotFoundError):
                service.respond(token, "yes")

    def test_soft_deleting_group_invalidates_tokens(self, db, service, proposal, group):
        token = _tokens(db, proposal.id)["alice@example.com"]
        group.deleted_at = datetime.utcnow()
        db.commit()

        with pytest.raises(NotFoundError):
            service.respond(token, "yes")
        with pytest.raises(NotFoundError):
            service.get_token_context(token)

    def test_non_owner_cannot_delete(self, db, service, proposal, other_user):
        with pytest.raises(ForbiddenError):
            service.delete_proposal(proposal.id, other_user)
        assert db.query(MeetingProposal).count() == 1


class TestConcurrentResponses:
    def test_racing_answers_leave_one_consistent_row(self, db, session_factory, proposal):
        token = _tokens(db, proposal.id)["alice@example.com"]
        errors = []
        barrier = threading.Barrier(8)

        def answer(i):
            session = session_factory()
            try:
                svc = ProposalService(session)
                barrier.wait()
                if i % 3 == 0:
                    svc.propose_alternate(
                        token,
                        AlternateProposal.model_validate({"date": "2026-12-01", "time": "10:00"}),
                    )
                else:
                    svc.respond(token, "yes" if i % 2 else "no")
            except Exception as e:  # noqa: BLE001 - collected and asserted below
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=answer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        db.expire_all()
        rows = db.query(ProposalResponse).filter_by(response_token=token).all()
        assert len(rows) == 1
        row = rows[0]
        assert row.response in ("yes", "no", "alternate")
        if row.response == "alternate":
            assert row.alternate_date == date(2026, 12, 1)
        else:
            assert row.alternate_date is None
            assert row.alternate_time is None
