"""
잡 모듈 패키지

이 패키지 아래의 모듈은 load_jobs("worker.job")로 재귀 import되며,
@job 데코레이터가 붙은 BaseJob 하위 클래스가 스케줄 잡으로 등록됩니다.
"""
