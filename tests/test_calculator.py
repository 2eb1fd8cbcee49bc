# tests/test_calculator.py

from q3ladder.calculator import compute_kd, ladder_sort_key, page, rank_rows


class TestKD:

    def test_no_deaths_is_kills(self):
        assert compute_kd(7, 0) == 7.0
        assert compute_kd(0, 0) == 0.0

    def test_ratio_rounded(self):
        assert compute_kd(5, 2) == 2.5
        assert compute_kd(2, 3) == 0.67
        assert compute_kd(0, 4) == 0.0

    def test_none_counts(self):
        assert compute_kd(None, None) == 0.0


class TestLadderOrder:

    def test_kd_breaks_kill_ties(self):
        rows = [
            {'identity': 'foo', 'kills': 5, 'deaths': 2},
            {'identity': 'bar', 'kills': 5, 'deaths': 0},
        ]
        ranked = rank_rows(rows)
        assert [r['identity'] for r in ranked] == ['bar', 'foo']
        assert ranked[0]['kd'] == 5.0
        assert ranked[1]['kd'] == 2.5

    def test_kills_first(self):
        rows = [
            {'identity': 'sniper', 'kills': 2, 'deaths': 0},
            {'identity': 'brawler', 'kills': 10, 'deaths': 9},
        ]
        assert [r['identity'] for r in rank_rows(rows)] == ['brawler', 'sniper']

    def test_deaths_then_name(self):
        # kills 0 and kd 0 for both: fewer deaths first, then name
        rows = [
            {'identity': 'b', 'kills': 0, 'deaths': 3},
            {'identity': 'c', 'kills': 0, 'deaths': 1},
            {'identity': 'a', 'kills': 0, 'deaths': 1},
        ]
        assert [r['identity'] for r in rank_rows(rows)] == ['a', 'c', 'b']

    def test_sort_key_computes_kd(self):
        assert ladder_sort_key({'name': 'x', 'kills': 4, 'deaths': 2}) == (-4, -2.0, 2, 'x')

    def test_page(self):
        rows = [{'n': i} for i in range(10)]
        assert page(rows, 3) == rows[:3]
        assert page(rows, 3, offset=8) == rows[8:]
        assert page(rows, None, offset=7) == rows[7:]
        assert page(rows, 5, offset=-2) == rows[:5]
