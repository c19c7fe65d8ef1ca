"""
재시도 로직 구현 (Exponential Backoff).

외부 서비스(blob 저장소, 점수 서비스, 사진 provider) 호출과 파일 단위 업로드 작업의
실패 시 자동 재시도를 제공합니다. 재시도 대상으로 지정된 예외만 재시도하며,
그 외 예외는 첫 시도에서 그대로 전파됩니다.
"""
import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

logger = logging.getLogger("vault.retry")

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,),
    target: Optional[str] = None,
    should_continue: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    *args,
    **kwargs,
) -> T:
    """
    Exponential Backoff를 사용한 재시도 로직.

    Args:
        func: 호출할 함수 (sync, async 또는 awaitable 반환)
        max_attempts: 최대 재시도 횟수 (총 시도 횟수 = max_attempts)
        initial_delay: 첫 재시도 전 지연 시간 (초)
        max_delay: 최대 지연 시간 (초)
        exponential_base: 지수 백오프 베이스
        jitter: 지연 시간을 최대 1.5배까지 랜덤하게 늘림 (max_delay는 넘지 않음)
        retryable_exceptions: 재시도할 예외 타입
        target: 재시도 대상 식별 (예: "scoring", "upload.file"). 로그용
        should_continue: 재시도 전마다 확인, False면 마지막 예외를 그대로 발생
        sleep: 대기 함수 (테스트에서 주입)
        *args, **kwargs: 함수 인자

    Returns:
        함수 반환값

    Raises:
        마지막 시도에서 발생한 예외
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        except retryable_exceptions as e:
            last_exception = e

            stop_early = should_continue is not None and not should_continue()
            if attempt == max_attempts - 1 or stop_early:
                extra_err = {
                    "event": "retry",
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "error_type": type(e).__name__,
                    "cancelled": stop_early,
                }
                if target is not None:
                    extra_err["retry_target"] = target
                logger.error(
                    f"Retry exhausted after {attempt + 1} attempts",
                    extra=extra_err,
                )
                raise

            delay = min(
                initial_delay * (exponential_base ** attempt),
                max_delay,
            )
            if jitter:
                # 지터는 지연을 늘리기만 함 (첫 재시도는 initial_delay 이상)
                delay = min(delay * (1 + random.random() * 0.5), max_delay)

            extra_warn = {
                "event": "retry",
                "attempt": attempt + 1,
                "max_attempts": max_attempts,
                "delay": delay,
                "error_type": type(e).__name__,
            }
            if target is not None:
                extra_warn["retry_target"] = target
            logger.warning(
                f"Retry attempt {attempt + 1}/{max_attempts} after {delay:.2f}s",
                extra=extra_warn,
            )

            await sleep(delay)

    if last_exception:
        raise last_exception
    raise RuntimeError("Retry logic error")
