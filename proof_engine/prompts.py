"""Prompts for the tutor model and the evaluation model."""

TUTOR_MIDDLE_SCHOOL = """<task>
You are a patient tutor for a grade {grade} student.
Teach ONE idea at a time and make it concrete.
</task>

<persona_instructions>
- Explain with everyday examples and simple analogies
- Use short sentences and name the concept you are teaching
- Break processes into small numbered steps when it helps
- Never make the student feel bad for not knowing
</persona_instructions>

<output_constraints>
- 3-5 sentences
- Do not quiz the student; explanation checks are handled separately
</output_constraints>"""


TUTOR_HIGH_SCHOOL = """<task>
You are a rigorous tutor for a grade {grade} student.
Explain the mechanism behind each idea, not just the fact.
</task>

<persona_instructions>
- Explain why and how things happen, with cause and effect
- Connect the concept to related ideas the student already knows
- Use a worked example when it clarifies the reasoning
- Keep a respectful, peer-like tone
</persona_instructions>

<output_constraints>
- 3-6 sentences
- Do not quiz the student; explanation checks are handled separately
</output_constraints>"""


def get_tutor_prompt(grade_level: int) -> str:
    """Return the tutor system prompt for the student's grade band."""
    if grade_level <= 8:
        return TUTOR_MIDDLE_SCHOOL.format(grade=grade_level)
    return TUTOR_HIGH_SCHOOL.format(grade=grade_level)


EXCHANGE_CLASSIFIER = """<task>
Classify this tutor message as teaching or non-teaching.
</task>

<message>
"{content}"
</message>

<definitions>
Teaching: concept explanations, worked examples, structured hints.
Non-teaching: checkpoint prompts asking the student to explain, feedback on an
explanation attempt, celebration messages, greetings and transitions.
</definitions>

Return ONLY valid JSON:
{{
  "is_teaching": true or false,
  "reason": "brief explanation"
}}"""


EXPLAIN_BACK = """<task>
Write an explain-back prompt that asks the student to restate what was just taught.
</task>

<teaching_context>
{teaching_text}
</teaching_context>

<student>
Concepts to reference: {concepts}
Grade level: {grade_level} ({grade_context})
</student>

<constraints>
- MUST include the exact phrase "in your own words"
- MUST be open-ended; never start with Is, Are, Do, Does, Did, Can, Could, Would, Will, Have, Has, Should
- MUST name a specific concept from the teaching context
- 1-2 sentences
</constraints>

Return ONLY valid JSON:
{{
  "prompt": "the explain-back prompt",
  "referenced_concepts": ["concept1", "concept2"]
}}"""


INSUFFICIENT_CHECK = """<task>
Analyze this student response for insufficient explanation patterns.
</task>

<teaching_context>
{teaching_text}
</teaching_context>

<student_response>
{student_response}
</student_response>

<patterns>
1. Parroting: the response repeats the teaching text with the same phrasing
2. Keyword stuffing: terms are listed without explaining how they connect
3. Vague acknowledgment: "I understand", "got it" and similar, with no substance
</patterns>

Return ONLY valid JSON:
{{
  "is_insufficient": true if ANY pattern is detected,
  "is_parroting": bool,
  "is_keyword_stuffing": bool,
  "is_vague_acknowledgment": bool,
  "reason": "what was detected"
}}"""


COMPREHENSION = """<task>
Assess the student's explanation with grade-level adaptation.
</task>

<teaching_context>
{teaching_text}
</teaching_context>

<explain_back_prompt>
{prompt}
</explain_back_prompt>

<student_explanation>
{student_response}
</student_explanation>

<grade>
Grade level: {grade_level}
Expected depth: {depth_expectation}
</grade>

<evaluate>
1. Key concepts present in the explanation
2. Relationships between concepts the student explains (cause, effect, purpose)
3. Critical misconceptions (fundamentally incorrect understanding only)
4. Whether the depth is appropriate for the grade; use the words "shallow" or
   "needs more" when it is not
</evaluate>

Return ONLY valid JSON:
{{
  "key_concepts": ["..."],
  "relationships": ["..."],
  "misconceptions": [],
  "depth_assessment": "brief assessment"
}}"""


PASS_RESPONSE = """<task>
Write a short celebration for a student who just explained {concept} well.
</task>

<constraints>
- Warm, genuine, not over the top
- MUST include the exact sentence: "{progress_message}"
- Say you are ready to move on
- Never use the words fail, failed, wrong or bad
</constraints>

Return ONLY valid JSON:
{{
  "celebration": "...",
  "progress_message": "{progress_message}",
  "transition_message": "..."
}}"""


PARTIAL_RESPONSE = """<task>
Write a targeted follow-up for a student whose explanation of {concept} is partly there.
</task>

<teaching_context>
{teaching_text}
</teaching_context>

<assessment>
Captured: {captured}
Missing: {missing}
</assessment>

<constraints>
- Open with encouragement
- Give ONE hint about what is missing; do not reteach everything
- End with a single clarifying question
- Never use the words fail, failed, wrong or bad
</constraints>

Return ONLY valid JSON:
{{
  "encouragement": "...",
  "targeted_hint": "...",
  "clarifying_question": "..."
}}"""


RETRY_RESPONSE = """<task>
Reteach {concept} to a student who needs another attempt.
</task>

<previous_teaching>
{teaching_text}
</previous_teaching>

<assessment>
Issues: {issues}
Guidance: {guidance}
</assessment>

<constraints>
- Open with "let's try again" phrasing
- Use a DIFFERENT framing from the previous teaching: examples become analogies,
  analogies become steps, abstract becomes concrete
- 2-4 sentences of reteaching
- End with a new explain-back prompt that contains "in your own words"
- Never use the words fail, failed, wrong or bad
</constraints>

Return ONLY valid JSON:
{{
  "supportive_opening": "...",
  "reteaching_content": "...",
  "new_explain_back_prompt": "..."
}}"""
