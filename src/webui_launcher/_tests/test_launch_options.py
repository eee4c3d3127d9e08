import pytest

from webui_launcher.launch_options import (
    LaunchOption,
    LaunchOptionCard,
    LaunchOptionDefinition,
    LaunchOptionType,
    build_arguments,
    cards_from_saved,
    save_options,
)

DEFINITIONS = [
    LaunchOptionDefinition(
        'Host',
        LaunchOptionType.STRING,
        default_value='localhost',
        options=('--host',),
    ),
    LaunchOptionDefinition(
        'VRAM', initial_value='--medvram', options=('--lowvram', '--medvram')
    ),
    LaunchOptionDefinition('API', initial_value=True, options=('--api',)),
    LaunchOptionDefinition(
        'Steps', LaunchOptionType.INT, initial_value='20', options=('--steps',)
    ),
    LaunchOptionDefinition.EXTRAS,
]


@pytest.mark.parametrize(
    ('option', 'expected'),
    [
        (LaunchOption('--api', option_value=True), ['--api']),
        (LaunchOption('--api', option_value=False), []),
        (
            LaunchOption('--preset anime', option_value=True),
            ['--preset', 'anime'],
        ),
        (
            LaunchOption('--port', LaunchOptionType.STRING, '7861'),
            ['--port', '7861'],
        ),
        (LaunchOption('--port', LaunchOptionType.STRING, ''), []),
        (LaunchOption('--steps', LaunchOptionType.INT, 5), ['--steps', '5']),
        (LaunchOption('--steps', LaunchOptionType.INT, None), []),
        (LaunchOption('--steps', LaunchOptionType.INT, 0), []),
        (
            LaunchOption('', LaunchOptionType.STRING, '--foo "a b" --bar'),
            ['--foo', 'a b', '--bar'],
        ),
    ],
)
def test_to_args(option, expected):
    assert option.to_args() == expected


def test_initial_values():
    host, vram, api, steps, extras = cards_from_saved(DEFINITIONS)
    assert host.options[0].option_value is None
    assert host.options[0].default_value == 'localhost'
    assert [o.option_value for o in vram.options] == [False, True]
    assert api.options[0].option_value is True
    assert steps.options[0].option_value == 20
    assert extras.title == 'Extra Launch Arguments'
    assert build_arguments([host, vram, api, steps, extras]) == [
        '--medvram',
        '--api',
        '--steps',
        '20',
    ]


def test_saved_values_win_over_initial_values():
    cards = cards_from_saved(DEFINITIONS)
    cards[0].options[0].option_value = '0.0.0.0'
    cards[2].options[0].option_value = False
    cards[4].options[0].option_value = '--share'
    saved = save_options(cards)

    # unset options are kept so they stay unset
    assert {'name': '--api', 'type': 'bool', 'value': False} in saved

    restored = cards_from_saved(DEFINITIONS, saved)
    assert build_arguments(restored) == [
        '--host',
        '0.0.0.0',
        '--medvram',
        '--steps',
        '20',
        '--share',
    ]


def test_options_order_is_kept():
    items = [
        LaunchOptionCard(
            'a', options=[LaunchOption('--b', option_value=True)]
        ),
        LaunchOption('--a', option_value=True),
    ]
    assert build_arguments(items) == ['--b', '--a']


def test_unknown_saved_values_are_ignored():
    cards = cards_from_saved(
        DEFINITIONS, [{'name': '--removed', 'type': 'bool', 'value': True}]
    )
    assert '--removed' not in build_arguments(cards)
