import pytest

from crossvest.contracts.vesting_ledger import VestingLedger
from crossvest.core.config import RefundPolicy
from crossvest.core.identity import DualIdentity

# Well-known development keys
ALICE_PUBLIC_KEY = bytes.fromhex("d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d")
ALICE_SS58 = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB_PUBLIC_KEY = bytes.fromhex("8eaf04151687736326c9fea17e25fc5287613693c912909cb226aa4794f26a48")
BOB_SS58 = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
CHARLIE_PUBLIC_KEY = bytes.fromhex("90b5ab205c6974c9ea841be688864633dc9ca8a357843eeacf2314649965fe22")

ADMIN_EVM = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
DONOR_EVM = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
OTHER_EVM = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"

START = 1_000
DURATION = 1_000


class FakeClock:
    """Settable time provider."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(now=START)


@pytest.fixture
def admin():
    return DualIdentity.from_evm(ADMIN_EVM)


@pytest.fixture
def alice():
    return DualIdentity.from_native(ALICE_PUBLIC_KEY)


@pytest.fixture
def bob():
    return DualIdentity.from_native(BOB_PUBLIC_KEY)


@pytest.fixture
def charlie():
    return DualIdentity.from_native(CHARLIE_PUBLIC_KEY)


@pytest.fixture
def donor():
    return DualIdentity.from_evm(DONOR_EVM)


@pytest.fixture
def outsider():
    return DualIdentity.from_evm(OTHER_EVM)


@pytest.fixture
def ledger(admin, clock):
    return VestingLedger(admin=admin, start=START, duration=DURATION, time_provider=clock)


@pytest.fixture
def capped_ledger(admin, clock):
    return VestingLedger(
        admin=admin,
        start=START,
        duration=DURATION,
        refund_policy=RefundPolicy.CAP,
        time_provider=clock,
    )
