"""Starter code placed in a new session when the creator supplies none."""
from app.domains.collaboration.entities import Language

PYTHON_TEMPLATE = '''# Collaborative Python Session
# Problem: Two Sum - Find two numbers that add up to target

def two_sum(nums, target):
    """
    Find two numbers in array that add up to target
    Args:
        nums: List of integers
        target: Target sum
    Returns:
        List of two indices
    """
    # TODO: Implement solution here
    pass

# Test the function
test_nums = [2, 7, 11, 15]
test_target = 9
result = two_sum(test_nums, test_target)
print(f"Result: {result}")
'''

JAVASCRIPT_TEMPLATE = '''// Collaborative JavaScript Session
// Problem: Two Sum - Find two numbers that add up to target

function twoSum(nums, target) {
    /**
     * Find two numbers in array that add up to target
     * @param {number[]} nums - Array of integers
     * @param {number} target - Target sum
     * @returns {number[]} Array of two indices
     */
    // TODO: Implement solution here
}

// Test the function
const testNums = [2, 7, 11, 15];
const testTarget = 9;
const result = twoSum(testNums, testTarget);
console.log(`Result: ${result}`);
'''

DEFAULT_TEMPLATES = {
    Language.PYTHON: PYTHON_TEMPLATE,
    Language.JAVASCRIPT: JAVASCRIPT_TEMPLATE,
}


def get_default_code(language: Language) -> str:
    return DEFAULT_TEMPLATES[language]
