from __future__ import annotations

from monthlyreport.report.formatter import (
    EMPTY_PLACEHOLDER,
    BulletGroup,
    Heading,
    Paragraph,
    parse_report_text,
)


def test_headings_paragraphs_and_bullets_keep_source_order():
    report = parse_report_text('# Title\n\nBody text.\n- a\n- b')

    assert report.blocks == [
        Heading(text='Title', level=1),
        Paragraph(text='Body text.'),
        BulletGroup(items=('a', 'b')),
    ]
    assert report.title == 'Title'


def test_tags_are_stripped_from_every_block():
    report = parse_report_text('<b>hola</b>\n# <i>Costs</i>\n- <span>one</span>')

    assert not any('<' in repr(b) or '>' in repr(b) for b in report.blocks)
    assert report.blocks[0] == Paragraph(text='hola')
    assert report.blocks[1] == Heading(text='Costs', level=1)


def test_tag_spanning_lines_is_removed_whole():
    assert parse_report_text('<div\nclass=x>hi').blocks == [Paragraph(text='hi')]

    report = parse_report_text('Intro <a\r\nhref="https://x.test">link</a>\n- <img\nsrc=y/> done')
    assert report.blocks == [Paragraph(text='Intro link'), BulletGroup(items=('done',))]


def test_empty_input_yields_single_placeholder_paragraph():
    for raw in ('', None, '   \n\t\n', '<br/>'):
        report = parse_report_text(raw)
        assert report.blocks == [Paragraph(text=EMPTY_PLACEHOLDER)]


def test_heading_levels_and_empty_heading_dropped():
    report = parse_report_text('# One\n## Two\n### Three\n#### Four\n##   \nafter')

    assert report.blocks[:3] == [
        Heading(text='One', level=1),
        Heading(text='Two', level=2),
        Heading(text='Three', level=3),
    ]
    # four markers are not a heading line
    assert report.blocks[3] == Paragraph(text='#### Four')
    assert report.blocks[4] == Paragraph(text='after')
    assert len(report.blocks) == 5


def test_bullet_markers_and_group_split_by_paragraph():
    report = parse_report_text('- a\n* b\n• c\nbreak\n-   d   e')

    assert report.blocks == [
        BulletGroup(items=('a', 'b', 'c')),
        Paragraph(text='break'),
        BulletGroup(items=('d e',)),
    ]


def test_dash_without_space_is_a_paragraph():
    report = parse_report_text('-5 degrees overnight')
    assert report.blocks == [Paragraph(text='-5 degrees overnight')]


def test_every_line_is_its_own_paragraph():
    report = parse_report_text('First line.\r\nSecond   line.\rThird.')
    assert [b.text for b in report.blocks] == ['First line.', 'Second line.', 'Third.']


def test_title_resolution():
    assert parse_report_text('## Sub\n# Main', title='  Monthly   report 2026-02 ').title == 'Monthly report 2026-02'
    assert parse_report_text('## Sub\n# Main').title == 'Main'
    assert parse_report_text('plain text').title == 'Report'


def test_block_type_tags():
    report = parse_report_text('# H\np\n- b')
    assert [b.type for b in report.blocks] == ['heading', 'paragraph', 'bullets']
