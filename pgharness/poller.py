"""
Polling helpers: wait for a query to give an answer, or for a server to
accept connections.

Both poll every 0.1 seconds and give up after 10 * timeout_default
attempts. They report failure by returning False and leave it to the test
to decide what that means.
"""

import time
from typing import Optional

from .errors import ConnectionFailure
from .models import HarnessConfig, PollBudget
from .reporting import get_diagnostics
from .session import Connector, Session, node_connstr


def poll_query_until(
    cluster: object,
    dbname: str,
    query: str,
    expected: str = "t",
    config: Optional[HarnessConfig] = None,
    connector: Optional[Connector] = None,
) -> bool:
    """
    Run query repeatedly until its output equals expected.

    Errors from the query count as a wrong answer, so polling continues
    through them. One session is used for every attempt.

    Returns:
        True if the expected output was seen, False if the budget ran out
    """
    budget = PollBudget.from_config(config or HarnessConfig.from_env())
    query_value = ""

    with Session.connect(node_connstr(cluster, dbname), connector) as session:
        for _ in range(budget.max_attempts):
            result = session.query(query)
            query_value = result.psqlout
            if query_value == expected:
                return True
            time.sleep(budget.interval)

    # Give up; the last output is usually what explains the failure
    get_diagnostics().poll_timed_out(query, expected, query_value)
    return False


def poll_until_connection(
    cluster: object,
    dbname: str,
    config: Optional[HarnessConfig] = None,
    connector: Optional[Connector] = None,
) -> bool:
    """
    Try to connect repeatedly until a connection succeeds.

    Each attempt opens a brand-new session and closes it straight away.

    Returns:
        True once connected, False if the budget ran out
    """
    budget = PollBudget.from_config(config or HarnessConfig.from_env())
    conninfo = node_connstr(cluster, dbname)

    for _ in range(budget.max_attempts):
        try:
            session = Session.connect(conninfo, connector)
        except ConnectionFailure:
            time.sleep(budget.interval)
            continue
        session.close()
        return True

    return False
