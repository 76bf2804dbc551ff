"""ICE candidate 파싱 유틸리티"""

import logging

from aiortc import RTCIceCandidate

logger = logging.getLogger(__name__)


class ICECandidateParser:
    """브라우저 ICE candidate 형식과 aiortc RTCIceCandidate 간 변환 유틸리티"""

    @staticmethod
    def parse(candidate_str: str, candidate_dict: dict) -> RTCIceCandidate | None:
        """상대가 보낸 candidate 문자열을 aiortc RTCIceCandidate로 변환

        형식: [candidate:]foundation component protocol priority ip port typ type [key value]...

        Args:
            candidate_str: candidate attribute 값 ("candidate:" 접두사 선택)
            candidate_dict: sdpMid, sdpMLineIndex

        Returns:
            RTCIceCandidate, 형식이 맞지 않으면 None
        """
        fields = candidate_str.removeprefix("candidate:").split()
        if len(fields) < 8 or fields[6] != "typ":
            logger.warning(f"Invalid candidate format: {candidate_str[:50]}")
            return None

        foundation, component, protocol, priority, ip, port, _, candidate_type = fields[:8]
        # 나머지는 "raddr x rport y generation 0 ..." 형태의 key/value 쌍
        extensions = dict(zip(fields[8::2], fields[9::2]))

        try:
            return RTCIceCandidate(
                component=int(component),
                foundation=foundation,
                ip=ip,
                port=int(port),
                priority=int(priority),
                protocol=protocol.lower(),
                type=candidate_type,
                relatedAddress=extensions.get("raddr"),
                relatedPort=int(extensions["rport"]) if "rport" in extensions else None,
                tcpType=extensions.get("tcptype"),
                sdpMid=candidate_dict.get("sdpMid"),
                sdpMLineIndex=candidate_dict.get("sdpMLineIndex"),
            )
        except ValueError as e:
            logger.warning(f"Failed to parse candidate: {e}")
            return None

    @staticmethod
    def from_sdp(sdp: str) -> list[dict]:
        """SDP 본문에 포함된 candidate를 RTCIceCandidateInit 목록으로 추출

        aiortc는 setLocalDescription 시점에 candidate를 모두 수집해 SDP에 포함시키므로
        trickle ICE 상대에게 별도로 전달할 때 사용합니다.
        """
        candidates: list[dict] = []
        sections: list[list[str]] = []

        for line in sdp.splitlines():
            line = line.strip()
            if line.startswith("m="):
                sections.append([])
            elif sections:
                sections[-1].append(line)

        for index, lines in enumerate(sections):
            mid = next((line[len("a=mid:"):] for line in lines if line.startswith("a=mid:")), None)
            for line in lines:
                if line.startswith("a=candidate:"):
                    candidates.append(
                        {
                            "candidate": line[len("a="):],
                            "sdpMid": mid,
                            "sdpMLineIndex": index,
                        }
                    )

        return candidates
