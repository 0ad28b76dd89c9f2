"""Examiner instructions and scoring prompts."""

from __future__ import annotations

from textwrap import dedent

from examiner.types import ArtifactRef, Scenario

END_OF_TEST_PHRASE = "That is the end of the test. Thank you."
OPENING_PROMPT = "Begin the test."
SKIP_PROMPT = "I would like to skip this question. Please continue with the test."

A2_CONVERSATION_AREAS = (
    "Your daily routine",
    "Your favourite food",
    "Festivals in your country",
    "Public transport",
    "Watching films or TV",
    "Your favourite music",
    "A recent personal experience",
    "Shopping for clothes",
    "Holidays and travel",
    "The weather",
    "Your hometown or city",
    "Your job or studies",
    "Your friends",
    "Weekends",
)

B1_CONVERSATION_AREAS = (
    "Festivals",
    "Means of transport",
    "Special occasions",
    "Entertainment",
    "Music",
    "Recent personal experiences",
)

PICTURE_PROMPTS = (
    "People shopping for clothes in a brightly lit department store.",
    "A construction worker wearing a hard hat and high-visibility jacket on a building site.",
    "A young couple having a romantic dinner at a restaurant with candle light.",
    "A group of tourists taking photos with their phones in front of a famous landmark.",
    "An elderly woman gardening in her sunny backyard, watering colorful flowers.",
    "A team of firefighters in uniform working to put out a fire on a building.",
    "A view from an airplane window, showing white clouds and a blue sky.",
)

FALLBACK_PICTURE_URL = "https://images.unsplash.com/photo-1528740561666-dc2479703592?q=80&w=1470&auto=format&fit=crop"

EXCHANGE_FORMAT = dedent(
    """\
    Reply with a single JSON object and nothing else:
    {"response": "<what you say next as the examiner>",
     "feedback": {"grammar": "...", "vocabulary": "...", "fluency": "...", "pronunciation": "..."},
     "pointsAwarded": <integer between 5 and 25 for the candidate's last answer>}
    The "response" field must contain the exact transition phrases required above."""
)


def a2_instruction(scenario: Scenario) -> str:
    first, second = (scenario.subjects + A2_CONVERSATION_AREAS)[:2]
    return dedent(
        f"""\
        You are a professional, friendly, and patient examiner for the A2 English speaking test.
        You will conduct a complete, structured, multi-part mock test. Do NOT provide any feedback
        to the candidate during the test. Only respond conversationally as an examiner would.
        Adhere strictly to the following 4-part structure, using the exact transition phrases.

        Part 1: Introduction.
        - Start with EXACTLY: "Hello. My name is Alex. Can you please tell me your full name?"
        - After the candidate responds, ask "And where are you from?".
        - Then ask two more simple introductory questions about their work, studies or home.
        - Then signal the next part by saying EXACTLY: "Thank you. Now, in the next part, we are going to look at a picture."

        Part 2: Picture Description.
        - Prompt the candidate by saying EXACTLY: "Please describe what you see in the picture."
        - Ask at least two relevant follow-up questions about the picture.
        - Then transition by saying EXACTLY: "Okay, thank you. Now, let's talk about something else."

        Part 3: Topic Discussion 1.
        - Use the topic: '{first}'. Start with an opening question and ask at least three follow-up questions.
        - Then transition by saying EXACTLY: "Thank you. Now let's talk about '{second}'."

        Part 4: Topic Discussion 2.
        - Discuss '{second}' with an opening question and at least three follow-up questions.
        - After the final answer, end the test by saying ONLY: "{END_OF_TEST_PHRASE}"
        """
    )


def b1_instruction(scenario: Scenario) -> str:
    points = ", ".join(scenario.topic_points) or "(no points given)"
    subjects = ", ".join(B1_CONVERSATION_AREAS)
    return dedent(
        f"""\
        You are a professional, friendly, and patient examiner for the Trinity GESE Grade 5 (B1)
        speaking test. You will conduct a complete, structured, 10-minute mock test.
        - Ask questions ONE AT A TIME and wait for the candidate to respond.
        - Do NOT provide any feedback to the candidate during the test.

        Candidate's prepared topic:
        - Title: "{scenario.topic_title}"
        - Points: {points}

        1. Topic Phase (up to 5 minutes):
        - Start with EXACTLY: "Okay, you've chosen to talk about '{scenario.topic_title}'. Please tell me about it."
        - Ask open-ended questions based on the topic points.
        - Then your next response must ONLY be: "Thank you. Now, let's move on to the conversation phase."

        2. Conversation Phase (up to 5 minutes):
        - Choose TWO subjects from: {subjects}.
        - Ask 2-3 questions about each subject.
        - When the conversation is finished your next response must ONLY be: "{END_OF_TEST_PHRASE}"
        """
    )


def final_assessment_prompt(exam_title: str, phases: tuple[str, ...], transcript: str) -> str:
    parts = ", ".join(phases)
    return dedent(
        f"""\
        You are an expert English examiner. The following is the transcript of a mock {exam_title}.
        Provide a final, comprehensive assessment of the candidate's performance across all parts: {parts}.
        Reply with a single JSON object and nothing else:
        {{"overallScore": <integer 0-100>,
          "feedback": {{"grammar": "...", "vocabulary": "...", "fluency": "...", "pronunciation": "..."}},
          "strengths": "<1-2 encouraging sentences>",
          "areasForImprovement": "<1-2 constructive sentences>"}}

        Transcript:
        """
    ) + transcript


def transcript_analysis_prompt(transcript: str, artifact: ArtifactRef | None) -> str:
    if artifact is None:
        picture = "There was no picture in this exam; set pictureDescriptionAnalysis to null."
    elif artifact.kind == "description":
        picture = f"The picture the candidate described shows: {artifact.value}"
    else:
        picture = f"The picture the candidate described was generated from: {artifact.prompt or artifact.value}"
    return dedent(
        f"""\
        You are an expert English examiner reviewing a mock speaking test turn by turn.
        {picture}
        Reply with a single JSON object and nothing else:
        {{"pictureDescriptionAnalysis": {{"modelAnswer": "...", "userPerformanceFeedback": "..."}},
          "conversationAnalysis": [{{"userTurn": "...", "feedback": "...", "suggestion": "..."}}]}}
        Include one conversationAnalysis item for every candidate turn.

        Transcript:
        """
    ) + transcript


def artifact_prompt(picture_prompt: str) -> str:
    return (
        "Describe, in three or four plain sentences, a realistic photograph of the following scene "
        f"so that an English learner could talk about it: {picture_prompt}"
    )
