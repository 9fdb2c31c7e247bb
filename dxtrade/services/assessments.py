from typing import Any

from dxtrade.constants import endpoints
from dxtrade.data.transport import describe_error
from dxtrade.domain.models import AssessmentsParams
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request


async def get_assessments(ctx: ClientContext, params: AssessmentsParams) -> Any:
    """Broker assessment report for one instrument over a time range."""
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "POST",
            endpoints.assessments(ctx.base_url),
            headers=ctx.auth_headers(),
            json_body={
                "from": params.start,
                "instrument": params.instrument,
                "subtype": params.subtype,
                "to": params.end,
            },
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.ASSESSMENTS_ERROR, f"Error fetching assessments: {describe_error(e)}")

    return response.data
