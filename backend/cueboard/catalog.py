"""Static 8-ball vocabulary: balls, ball groups and event types."""

CUE_BALL = 'cue'

FULL = 'full'
STRIPED = 'striped'
BALL_GROUPS = (FULL, STRIPED)

# id -> (colour, group); the cue ball belongs to no group
BALLS = {
    CUE_BALL: ('white', None),
    '1': ('yellow', FULL),
    '2': ('blue', FULL),
    '3': ('red', FULL),
    '4': ('purple', FULL),
    '5': ('orange', FULL),
    '6': ('green', FULL),
    '7': ('maroon', FULL),
    '8': ('black', FULL),
    '9': ('yellow', STRIPED),
    '10': ('blue', STRIPED),
    '11': ('red', STRIPED),
    '12': ('purple', STRIPED),
    '13': ('orange', STRIPED),
    '14': ('green', STRIPED),
    '15': ('maroon', STRIPED),
}

OBJECT_BALLS = tuple(ball_id for ball_id in BALLS if ball_id != CUE_BALL)

START = 'start'
END = 'end'
NEXT_PLAYER = 'next_player'
BALLS_POTTED = 'balls_potted'
FOUL = 'faul'
FOUL_AND_NEXT_PLAYER = 'faul_and_next_player'
CUE_BALL_LEFT_TABLE = 'cue_ball_left_table'
CUE_BALL_POSITIONED = 'cue_ball_gets_positioned'

EVENT_TYPES = (
    START,
    END,
    NEXT_PLAYER,
    BALLS_POTTED,
    FOUL,
    FOUL_AND_NEXT_PLAYER,
    CUE_BALL_LEFT_TABLE,
    CUE_BALL_POSITIONED,
)


def ball_group(ball_id):
    return BALLS[ball_id][1]


def balls_payload():
    return [
        {'id': ball_id, 'color': colour, 'group': group}
        for ball_id, (colour, group) in BALLS.items()
    ]
