"""
클라이언트 IP 추출 유틸리티.

프록시나 로드밸런서를 거치는 경우 실제 클라이언트 IP를 추출합니다.
"""
from typing import Optional

from fastapi import Request

# 순서대로 확인, 처음 발견된 헤더 사용
FORWARDED_IP_HEADERS = ("X-Real-IP", "CF-Connecting-IP", "True-Client-IP")


def get_client_ip(request: Request) -> Optional[str]:
    """
    요청에서 실제 클라이언트 IP를 추출합니다 (로그용).

    다음 순서로 확인합니다:
    1. X-Forwarded-For (쉼표로 구분된 IP 리스트, 첫 번째 값)
    2. X-Real-IP, CF-Connecting-IP, True-Client-IP
    3. 직접 연결 IP (request.client.host)

    앞단 프록시가 외부 요청의 헤더를 제거하지 않으면 위조될 수 있습니다.
    """
    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        client_ip = x_forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip

    for header in FORWARDED_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client:
        return request.client.host
    return None
