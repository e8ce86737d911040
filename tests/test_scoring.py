from app.domain.game.scoring import compute_score, remaining_seconds, round_half_up, score_multiplier


def test_no_time_left_still_scores_base():
    assert score_multiplier(0) == 1
    assert compute_score(0, True, 30) == 100


def test_full_time_left_scales_with_total():
    assert score_multiplier(30) == 3
    assert compute_score(30, True, 30) == 300


def test_multiplier_floor_is_one():
    assert compute_score(5, True, 30) == 100
    assert compute_score(9.9, True, 30) == 100


def test_intermediate_values():
    assert compute_score(15, True, 30) == 150
    assert compute_score(25, True, 30) == 250


def test_incorrect_always_zero():
    for remaining in (0, 7, 15, 30):
        assert compute_score(remaining, False, 30) == 0


def test_remaining_is_clamped_to_total():
    assert compute_score(45, True, 30) == 300
    assert compute_score(-3, True, 30) == 100


def test_deterministic():
    assert {compute_score(17, True, 30) for _ in range(20)} == {170}


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.49) == 2


def test_remaining_seconds_counts_whole_seconds():
    assert remaining_seconds(30, 0) == 30
    assert remaining_seconds(30, 0.9) == 30
    assert remaining_seconds(30, 1.1) == 29
    assert remaining_seconds(30, 99) == 0
