"""Prompt templates and the JSON schema Claude must answer with."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Language = Literal["ja", "en"]


# ---------------------------------------------------------------------------
# Output schema (no ids; ids are assigned when the output is transformed)
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OutputSpeaker(_CamelModel):
    name: str = Field(min_length=1)
    lark_user_id: str | None = Field(default=None, alias="larkUserId")


class OutputTopic(_CamelModel):
    title: str = Field(min_length=1)
    start_time: int = Field(alias="startTime", ge=0)
    end_time: int = Field(alias="endTime", ge=0)
    summary: str
    key_points: list[str] = Field(alias="keyPoints")
    speakers: list[OutputSpeaker] | None = None


class OutputDecision(_CamelModel):
    content: str = Field(min_length=1)
    context: str
    decided_at: int = Field(alias="decidedAt", ge=0)


class OutputActionItem(_CamelModel):
    content: str = Field(min_length=1)
    assignee: OutputSpeaker | None = None
    due_date: str | None = Field(default=None, alias="dueDate", pattern=r"^\d{4}-\d{2}-\d{2}$")
    priority: Literal["high", "medium", "low"]


class MinutesOutput(_CamelModel):
    summary: str = Field(min_length=1)
    topics: list[OutputTopic]
    decisions: list[OutputDecision]
    action_items: list[OutputActionItem] = Field(alias="actionItems")
    attendees: list[OutputSpeaker] | None = None


# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_JA = """あなたは議事録作成の専門家です。
会議の文字起こしから、構造化された高品質な議事録を作成します。

役割:
- 会議の内容を正確に把握し、重要な情報を漏らさず抽出する
- 話題の流れを理解し、論理的にセグメント分けする
- 決定事項とアクションアイテムを明確に識別する
- 簡潔で読みやすい文章で要約する

出力形式:
- 必ずJSON形式で出力する
- マークダウンやコードブロックは使用しない
- 指定されたスキーマに厳密に従う"""

SYSTEM_PROMPT_EN = """You are an expert at writing meeting minutes.
You turn meeting transcripts into structured, high-quality minutes.

Your role:
- Understand the meeting accurately and extract every important point
- Follow the flow of discussion and split it into logical topics
- Identify decisions and action items clearly
- Summarize in concise, readable prose

Output format:
- Always answer in JSON
- Do not use markdown or code blocks
- Follow the given schema strictly"""


def get_system_prompt(language: Language = "ja") -> str:
    return SYSTEM_PROMPT_JA if language == "ja" else SYSTEM_PROMPT_EN


# ---------------------------------------------------------------------------
# User prompts
# ---------------------------------------------------------------------------

USER_PROMPT_JA = """以下の会議の文字起こしから、構造化された議事録を作成してください。

## 出力要件

### 1. 全体要約 (summary)
- 3〜5文で会議全体の要点をまとめる
- 会議の目的、主な議論点、結論を含める

### 2. 話題セグメント (topics)
- 議論の流れに沿って話題を分割する
- 各話題: title, startTime (ミリ秒・推定可), endTime (ミリ秒・推定可), summary (1〜2文), keyPoints (配列), speakers (参加者から選択)

### 3. 決定事項 (decisions)
- 「決定」「承認」「合意」「決まった」「採用」などの表現から抽出する
- 各決定事項: content, context (背景・理由), decidedAt (ミリ秒・推定可)
- 明確な決定がなければ空配列

### 4. アクションアイテム (actionItems)
- 「やる」「対応する」「確認する」「作成する」などの表現から抽出する
- 各項目: content, assignee (判明した場合), dueDate (YYYY-MM-DD、判明した場合), priority ("high" / "medium" / "low")
- 明確なアクションがなければ空配列

## 会議情報
タイトル: {title}
日付: {date}
参加者: {attendees}

## 文字起こし
{transcript}

## 注意事項
- id フィールドは含めない（サーバー側で付与する）
- 発言者は name（と分かれば larkUserId）のみでよい
- 時間は 0 から始まるミリ秒の推定値でよい
- 判別できない情報は省略可能なフィールドとして扱う"""

USER_PROMPT_EN = """Create structured meeting minutes from the transcript below.

## Output requirements

### 1. Overall summary (summary)
- Summarize the whole meeting in 3-5 sentences
- Cover the purpose, the main discussion points and the conclusions

### 2. Topic segments (topics)
- Split the discussion into topics as it flows
- Each topic: title, startTime (ms, estimate is fine), endTime (ms, estimate is fine), summary (1-2 sentences), keyPoints (array), speakers (chosen from the attendees)

### 3. Decisions (decisions)
- Look for phrases such as "decided", "approved", "agreed", "adopted"
- Each decision: content, context (background or reason), decidedAt (ms, estimate is fine)
- Use an empty array if nothing was clearly decided

### 4. Action items (actionItems)
- Look for phrases such as "will do", "handle", "check", "create"
- Each item: content, assignee (if known), dueDate (YYYY-MM-DD, if known), priority ("high", "medium" or "low")
- Use an empty array if there are no clear actions

## Meeting
Title: {title}
Date: {date}
Attendees: {attendees}

## Transcript
{transcript}

## Notes
- Do not include id fields; they are assigned server-side
- Speakers only need a name (and larkUserId when known)
- Times are estimates in milliseconds starting at 0
- Leave out optional fields you cannot determine"""


def build_user_prompt(
    transcript: str,
    title: str,
    date: str,
    attendees: list[str],
    language: Language = "ja",
) -> str:
    if not transcript.strip():
        raise ValueError("Transcript is required and cannot be empty")
    if not title.strip():
        raise ValueError("Meeting title is required and cannot be empty")
    if not date.strip():
        raise ValueError("Meeting date is required and cannot be empty")

    template = USER_PROMPT_JA if language == "ja" else USER_PROMPT_EN
    # Sequential replace so braces inside the transcript are left alone
    return (
        template.replace("{title}", title)
        .replace("{date}", date)
        .replace("{attendees}", ", ".join(attendees) if attendees else "(Not specified)")
        .replace("{transcript}", transcript)
    )
