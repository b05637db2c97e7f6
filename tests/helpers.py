from monstersweeper.game_engine import compute_neighbor_sums, new_cell
from monstersweeper.modes import get_mode
from monstersweeper.rooms import PLAYING, new_room


def make_board(rows, cols, monsters=None):
    board = [[new_cell() for _ in range(cols)] for _ in range(rows)]
    for (r, c), lv in (monsters or {}).items():
        cell = board[r][c]
        cell["isMonster"] = True
        cell["monsterLevel"] = lv
        cell["monsterHp"] = lv
        cell["monsterMaxHp"] = lv
    compute_neighbor_sums(board)
    return board


def playing_room(mode_id="easy", monsters=None, host="host", **overrides):
    mode = get_mode(mode_id)
    room = new_room(host, mode_id, now_ms=0)
    room["board"] = make_board(mode.rows, mode.cols, monsters)
    room["gameState"] = PLAYING
    room["firstClick"] = False
    room["timerRunning"] = True
    room["startedAt"] = 0
    room.update(overrides)
    return room


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def call_later(self, delay_s, fn):
        self.calls.append((delay_s, fn))

    def run_all(self):
        while self.calls:
            _delay, fn = self.calls.pop(0)
            fn()
