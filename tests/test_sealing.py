import pytest

from autoprocure.exceptions import SealError
from autoprocure.models import DecisionConstraints
from autoprocure.sealing import HEADER_SIZE, ConstraintSealer


@pytest.fixture
def constraints():
    return DecisionConstraints(max_budget=500, min_quality_score=7.5, preferred_sla=99.9)


class TestSealerSecret:
    def test_missing_secret(self):
        with pytest.raises(ValueError, match="No encryption secret"):
            ConstraintSealer(None)

    def test_short_secret_rejected(self):
        with pytest.raises(ValueError, match="at least 32 characters"):
            ConstraintSealer("too-short")

    def test_short_secret_allowed_for_development(self):
        sealer = ConstraintSealer("dev", allow_insecure_secret=True)
        assert sealer.open(sealer.seal({"maxBudget": 1}))["maxBudget"] == 1


class TestSealAndOpen:
    def test_open_recovers_constraints(self, sealer, constraints):
        opened = sealer.open(sealer.seal(constraints))
        assert opened == {"maxBudget": 500, "minQualityScore": 7.5, "preferredSLA": 99.9}

    def test_layout(self, sealer, constraints):
        blob = sealer.seal(constraints)
        assert len(blob) > HEADER_SIZE
        assert b"maxBudget" not in blob

    def test_fresh_iv_per_seal(self, sealer, constraints):
        assert sealer.seal(constraints) != sealer.seal(constraints)

    def test_wrong_key(self, sealer, constraints):
        other = ConstraintSealer("a-completely-different-secret-value-1234")
        with pytest.raises(SealError):
            other.open(sealer.seal(constraints))

    @pytest.mark.parametrize("position", [0, 20, -1])
    def test_tampering_detected(self, sealer, constraints, position):
        blob = bytearray(sealer.seal(constraints))
        blob[position] ^= 0x01
        with pytest.raises(SealError, match="authentication"):
            sealer.open(bytes(blob))

    def test_truncated(self, sealer):
        with pytest.raises(SealError, match="too short"):
            sealer.open(b"\x00" * (HEADER_SIZE - 1))
