"""
Tunnel LB Agent
어노테이션이 지정된 Ingress/LoadBalancer Service마다 원격 터널을 프로비저닝하고
호스트에서 WireGuard 터널 프로세스를 유지하는 컨트롤러

Features:
- Ingress/Service watch 및 중복 제거 작업 큐
- 원격 프로비저닝 API 기반 create/update/delete 수렴
- 로컬 WireGuard 터널 수명주기 관리
- 외부 주소 status 반영
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
