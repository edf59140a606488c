"""테스트용 잡 패키지"""
