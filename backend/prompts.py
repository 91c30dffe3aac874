# Prompt templates for task extraction.
# The model only proposes values; llm_parser validates and normalizes every field.
# scheduledTime null is meaningful: the task goes to the inbox.
import json
from datetime import datetime, timedelta
from typing import Optional

from time_utils import format_date, get_jst_now

SYSTEM_PROMPT = "日本語タスク解析エキスパート。出力は必ずJSONオブジェクトのみ。"

FIRST_INPUT_PROMPT = """あなたは日本語の自然言語入力からタスク情報を高精度で抽出するエキスパートです。

【入力】
\"\"\"{input}\"\"\"

【現在時刻（JST）】
{now}

【抽出項目】
1. title: タスク内容（時間表現を除き、具体的な動作を含める）
2. scheduledDate: 実行予定日（YYYY-MM-DD形式、あれば）
3. scheduledTime: 実行予定時間（"HH:mm"または"morning"/"noon"/"afternoon"/"evening"、あれば。不明確な場合はnull）
4. deadline: 期限（ISO8601 JST+09:00、あれば。常に23:59で設定）
5. durationMinutes: 所要時間（分単位の数値、あれば）
6. category: カテゴリ（shopping/reply/work/personal/other、推測できれば）

【抽出ルール】
- title: 時間表現（明日、今日、3時、1時間など）は除外。動詞を含む具体的な行動を抽出
- scheduledDate: "明日"→"{tomorrow}"、"今日"→"{today}"、日付部分のみを抽出
- scheduledTime:
  - 具体的時刻"3時"→"15:00"、"午前9時"→"09:00"
  - 時間帯"午前中"→"morning"、"昼"→"noon"、"午後"→"afternoon"、"夜"→"evening"
  - 時刻が不明確（"明日"だけなど）→ null（この場合インボックスへ）
- deadline: "明日までに"→"{tomorrow}T23:59:00+09:00"、"今週中"→今週日曜の23:59
- durationMinutes: "1時間"→60、"30分"→30、"2時間半"→150、"1.5時間"→90
- category: 買い物→shopping、返信/連絡→reply、業務/会議→work、個人/趣味→personal

【具体例】
入力: "明日の午後2時から1時間ほど会議"
→ title: "会議"、scheduledDate: "{tomorrow}"、scheduledTime: "14:00"、durationMinutes: 60、category: "work"

入力: "明日の午前中に買い物"
→ title: "買い物"、scheduledDate: "{tomorrow}"、scheduledTime: "morning"、category: "shopping"

入力: "明日までにレポートを書く、所要時間3時間"
→ title: "レポートを書く"、deadline: "{tomorrow}T23:59:00+09:00"、durationMinutes: 180、category: "work"

入力: "明後日に歯医者"
→ title: "歯医者に行く"、scheduledDate: "{day_after_tomorrow}"、scheduledTime: null（時刻不明確なのでインボックスへ）、category: "personal"

【重要】
- titleは必ず具体的な動作を含む（「（タイトル未定）」は使わない）
- scheduledTimeは時刻が明確な場合のみ設定。不明確な場合はnull（インボックスへ）
- deadlineは常に23:59の時刻で設定
- durationMinutesは数値（分）で出力。nullでも可

【出力形式 - 厳密に遵守】
必ず以下のJSONのみを出力：
{{
  "title": "string（具体的な動作）",
  "scheduledDate": "YYYY-MM-DDまたはnull",
  "scheduledTime": "HH:mmまたはmorning/noon/afternoon/eveningまたはnull",
  "deadline": "YYYY-MM-DDTHH:mm:ss+09:00またはnull",
  "durationMinutes": "numberまたはnull",
  "category": "shopping|reply|work|personal|otherまたはnull"
}}"""

CONTINUATION_PROMPT = """あなたはタスク情報を更新するエキスパートです。現在のタスク情報とユーザーの追加入力から、不足している情報を埋めてください。

【現在のタスク情報】
{current}

【現在の質問フィールド】
{field}

【ユーザーの追加入力】
\"\"\"{input}\"\"\"

【現在時刻（JST）】
{now}

【更新ルール】
1. 新しい情報を優先: 追加入力が既存情報と矛盾する場合、新しい入力を優先
2. 追加情報を抽出:
   - 「明日11時」→ scheduledDate: "{tomorrow}", scheduledTime: "11:00"
   - 「明日の午前中」→ scheduledDate: "{tomorrow}", scheduledTime: "morning"
   - 「明日だけ」→ scheduledDate: "{tomorrow}", scheduledTime: null（時刻不明確）
3. 単純な選択肢（「明日」「今日」など）は現在の質問フィールドに設定
4. titleは変更しない（明確に変更を求められた場合のみ更新）
5. 時刻が不明確な場合はscheduledTimeをnullに設定（その場合インボックスへ）

【具体例】
現在: {{ "title": "会議", "category": "work", "scheduledDate": null, "scheduledTime": null }}
入力: "明日の午後3時"
→ scheduledDate: "{tomorrow}", scheduledTime: "15:00" を設定

現在: {{ "title": "レポート", "deadline": null }}
入力: "明日までに"
→ deadline: "{tomorrow}T23:59:00+09:00" を設定

現在: {{ "title": "タスク", "durationMinutes": null }}
入力: "2時間かかる"
→ durationMinutes: 120 を設定

【出力形式】
{{
  "title": "string（変更なしなら既存値）",
  "scheduledDate": "YYYY-MM-DD | null",
  "scheduledTime": "HH:mm または morning/noon/afternoon/evening | null",
  "deadline": "YYYY-MM-DDTHH:mm:ss+09:00 | null",
  "durationMinutes": "number | null",
  "category": "shopping|reply|work|personal|other | null"
}}"""


def _anchors(now: Optional[datetime]) -> dict:
    now = now or get_jst_now()
    return {
        "now": now.strftime("%Y/%m/%d %H:%M:%S"),
        "today": format_date(now),
        "tomorrow": format_date(now + timedelta(days=1)),
        "day_after_tomorrow": format_date(now + timedelta(days=2)),
    }


def build_first_input_prompt(text: str, now: Optional[datetime] = None) -> str:
    """Full extraction prompt for the first message of a conversation."""
    return FIRST_INPUT_PROMPT.format(input=text, **_anchors(now))


def build_continuation_prompt(
    text: str,
    current_task_info: dict,
    current_field: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Merge prompt: current record + the field being asked + new text."""
    return CONTINUATION_PROMPT.format(
        input=text,
        current=json.dumps(current_task_info, ensure_ascii=False, indent=2),
        field=current_field or "なし",
        **_anchors(now),
    )
