# photo_api/utils/guard.py

def in01(x: float, name: str = "value"):
    """Assert that a value is normalized between 0 and 1"""
    assert 0.0 <= x <= 1.0, f"{name} not normalized [0,1]: {x}"
